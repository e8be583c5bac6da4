# --------------------------------------------------------------------------
# Langgol - Farmer Support Accounts & History API
# --------------------------------------------------------------------------
# Features: Signup, Email Verification, Login, Security-Question Password Reset,
#           Profile Update, Admin User List, Per-User History, Mail Outbox
# Run: pip install -e .  then  langgol-api  (or: python app.py)
# Open: http://127.0.0.1:8000/docs
# --------------------------------------------------------------------------

import os
import secrets
import smtplib
import logging
from datetime import datetime, timedelta, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Literal, Optional

import uvicorn
from dotenv import load_dotenv

from fastapi import FastAPI, HTTPException, Depends, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# Auth
import pymongo
from pymongo.errors import DuplicateKeyError
from passlib.context import CryptContext
from jose import JWTError, jwt

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------
# CONFIGURATION
# --------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Auth CONFIGURATION
SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_urlsafe(32)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))  # 1 day
ACCESS_TOKEN_COOKIE = "access_token"
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
VERIFICATION_CODE_BYTES = int(os.getenv("VERIFICATION_CODE_BYTES", "3"))  # 6 hex characters

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@langgol.app")
DEFAULT_ADMIN_PASSWORD = "adminpassword"
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD)

# MAIL CONFIGURATION
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.hostinger.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
SMTP_USE_SSL = os.getenv("SMTP_USE_SSL", "1") == "1"
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "Langgol")

# DB SETUP (MongoDB)
MONGO_CONNECTION_STRING = os.getenv("MONGO_URL", "mongodb://localhost:27017/")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "langgol")
db_client = pymongo.MongoClient(MONGO_CONNECTION_STRING, connect=False, serverSelectionTimeoutMS=5000)
db = db_client[MONGO_DB_NAME]
users_collection = db["users"]
history_collection = db["history"]
outbox_collection = db["outbox"]


def init_db():
    # Signup relies on this index for atomic email uniqueness.
    users_collection.create_index("email", unique=True)
    history_collection.create_index("email", unique=True)
    outbox_collection.create_index([("status", pymongo.ASCENDING), ("to", pymongo.ASCENDING)])


def _now() -> datetime:
    return datetime.now(timezone.utc)

# --------------------------------------------------------------------------
# ERRORS & MESSAGES
# --------------------------------------------------------------------------

class AccountError(Exception):
    status_code = 400
    error = "account_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.error)
        self.detail = detail


class Conflict(AccountError):
    status_code = 409
    error = "conflict"


class AlreadyVerified(Conflict):
    error = "already_verified"


class NotFound(AccountError):
    status_code = 404
    error = "not_found"


class InvalidCode(AccountError):
    status_code = 400
    error = "invalid_code"


class WrongAnswer(AccountError):
    status_code = 400
    error = "wrong_answer"


class InvalidCredentials(AccountError):
    """Unknown email or wrong password; the two are reported identically."""
    status_code = 401
    error = "credentials"


class Unverified(AccountError):
    status_code = 401
    error = "unverified"


class MailDispatchFailure(AccountError):
    status_code = 500
    error = "mail_dispatch"


MESSAGES = {
    "en": {
        "conflict": "An account with this email already exists.",
        "already_verified": "This account is already verified.",
        "not_found": "No account was found with this email.",
        "invalid_code": "Invalid verification code.",
        "wrong_answer": "Incorrect answer. Please try again.",
        "credentials": "Incorrect email or password.",
        "unverified": "Your account is not verified. Please enter the code sent to your email.",
        "mail_dispatch": "Your account was created but the verification email could not be sent. Please request a new code.",
        "account_error": "The request could not be completed.",
        "signup_success": "User created. Please check your email for the verification code.",
        "reset_success": "Password changed successfully. Please log in.",
    },
    "bn": {
        "conflict": "এই ইমেইল দিয়ে ইতিমধ্যে একাউন্ট আছে।",
        "already_verified": "এই একাউন্ট ইতিমধ্যে যাচাই করা হয়েছে।",
        "not_found": "এই ইমেইল দিয়ে কোনো একাউন্ট খুঁজে পাওয়া যায়নি।",
        "invalid_code": "ভুল যাচাইকরণ কোড।",
        "wrong_answer": "ভুল উত্তর। অনুগ্রহ করে আবার চেষ্টা করুন।",
        "credentials": "ভুল ইমেইল অথবা পাসওয়ার্ড।",
        "unverified": "আপনার একাউন্ট যাচাই করা হয়নি। অনুগ্রহ করে আপনার ইমেইলে পাঠানো কোডটি দিন।",
        "mail_dispatch": "একাউন্ট তৈরি হয়েছে, কিন্তু যাচাইকরণ ইমেইল পাঠানো যায়নি। অনুগ্রহ করে নতুন কোডের অনুরোধ করুন।",
        "account_error": "অনুরোধটি সম্পন্ন করা যায়নি।",
        "signup_success": "নিবন্ধন সফল হয়েছে! আপনার একাউন্ট যাচাই করতে অনুগ্রহ করে আপনার ইমেইল চেক করুন।",
        "reset_success": "পাসওয়ার্ড সফলভাবে পরিবর্তন করা হয়েছে। অনুগ্রহ করে লগ ইন করুন।",
    },
}


def preferred_language(request: Request) -> str:
    header = request.headers.get("accept-language", "")
    for part in header.split(","):
        lang = part.split(";")[0].strip().split("-")[0].lower()
        if lang in MESSAGES:
            return lang
    return DEFAULT_LANGUAGE if DEFAULT_LANGUAGE in MESSAGES else "en"


def localize(key: str, lang: str) -> str:
    table = MESSAGES.get(lang, MESSAGES["en"])
    return table.get(key) or MESSAGES["en"].get(key, key)

# --------------------------------------------------------------------------
# AUTH & PYDANTIC MODELS
# --------------------------------------------------------------------------

# AUTH HELPER FUNCTIONS
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
BCRYPT_MAX_BYTES = 72

def fits_bcrypt(secret: str) -> bool:
    # bcrypt only looks at the first 72 bytes; longer secrets would match on a prefix.
    return len(secret.encode("utf-8")) <= BCRYPT_MAX_BYTES

def check_bcrypt_length(value: str) -> str:
    if not fits_bcrypt(value):
        raise ValueError(f"must be at most {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded")
    return value

def verify_password(plain_password, hashed_password):
    if not fits_bcrypt(plain_password):
        return False
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def hash_security_answer(answer: str) -> str:
    return pwd_context.hash(answer.casefold())

def verify_security_answer(answer: str, stored: str) -> bool:
    if pwd_context.identify(stored) is None:
        # Accounts created before answers were hashed keep a plaintext answer.
        return secrets.compare_digest(stored.casefold().encode("utf-8"), answer.casefold().encode("utf-8"))
    if not fits_bcrypt(answer.casefold()):
        return False
    return pwd_context.verify(answer.casefold(), stored)

def generate_verification_code() -> str:
    return secrets.token_hex(VERIFICATION_CODE_BYTES).upper()

def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    if expires_delta:
        expire = _now() + expires_delta
    else:
        expire = _now() + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

# Pydantic Models
class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=30)
    address: str = Field(..., min_length=1, max_length=255)
    security_question: str = Field(..., alias="securityQuestion", min_length=1, max_length=255)
    security_answer: str = Field(..., alias="securityAnswer", min_length=1, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return check_bcrypt_length(value)

    @field_validator("security_answer")
    @classmethod
    def answer_fits_bcrypt(cls, value: str) -> str:
        check_bcrypt_length(value.casefold())
        return value

class VerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., max_length=64)

class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(..., alias="pass")

class EmailRequest(BaseModel):
    email: EmailStr

class CompletePasswordResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    answer: str
    new_password: str = Field(..., alias="newPass", min_length=8, max_length=72)

    @field_validator("new_password")
    @classmethod
    def new_password_fits_bcrypt(cls, value: str) -> str:
        return check_bcrypt_length(value)

class UserUpdateProfile(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    address: Optional[str] = Field(default=None, max_length=255)

class UserPublic(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    name: str = ""
    phone: str = ""
    address: str = ""
    security_question: str = Field(default="", alias="securityQuestion")
    is_verified: bool = Field(default=False, alias="isVerified")
    is_admin: bool = Field(default=False, alias="isAdmin")

class ChatMessage(BaseModel):
    sender: Literal["user", "model"]
    text: str
    timestamp: int

class LiveHistoryItem(BaseModel):
    user: str
    model: str
    timestamp: int

class ImageHistoryItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_data_url: str = Field(..., alias="imageDataUrl")
    analysis: str
    timestamp: int
    file_name: str = Field(..., alias="fileName")

class History(BaseModel):
    chat: List[ChatMessage] = Field(default_factory=list)
    live: List[LiveHistoryItem] = Field(default_factory=list)
    image: List[ImageHistoryItem] = Field(default_factory=list)

class HistorySaveRequest(BaseModel):
    email: EmailStr
    history: History


def public_user(user_doc: dict) -> dict:
    return UserPublic.model_validate(user_doc).model_dump(by_alias=True)

# --------------------------------------------------------------------------
# MAIL OUTBOX
# --------------------------------------------------------------------------

def send_email(message: dict) -> None:
    if not EMAIL_USER or not EMAIL_PASS:
        raise smtplib.SMTPException("Email credentials not configured. Set EMAIL_USER and EMAIL_PASS.")

    mime = MIMEMultipart("alternative")
    mime["From"] = f'"{MAIL_FROM_NAME}" <{EMAIL_USER}>'
    mime["To"] = message["to"]
    mime["Subject"] = message["subject"]
    mime.attach(MIMEText(message["text"], "plain", "utf-8"))
    mime.attach(MIMEText(message["html"], "html", "utf-8"))

    smtp_class = smtplib.SMTP_SSL if SMTP_USE_SSL else smtplib.SMTP
    with smtp_class(SMTP_HOST, SMTP_PORT, timeout=10) as server:
        if not SMTP_USE_SSL:
            server.starttls()
        server.login(EMAIL_USER, EMAIL_PASS)
        server.send_message(mime)

def enqueue_mail(to: str, subject: str, text: str, html: str):
    result = outbox_collection.insert_one({
        "to": to,
        "subject": subject,
        "text": text,
        "html": html,
        "status": "pending",
        "attempts": 0,
        "last_error": None,
        "created_at": _now(),
    })
    return result.inserted_id

def enqueue_verification_mail(email: str, code: str):
    return enqueue_mail(
        to=email,
        subject="Verify your Langgol account",
        text=f"Your verification code is: {code}",
        html=f"<b>Your verification code is: {code}</b>",
    )

def dispatch_mail(message_id) -> None:
    message = outbox_collection.find_one({"_id": message_id})
    if message is None:
        raise MailDispatchFailure(f"Outbox message {message_id} does not exist")
    try:
        send_email(message)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send mail %s to %s: %s", message_id, message["to"], e)
        outbox_collection.update_one(
            {"_id": message_id},
            {"$inc": {"attempts": 1}, "$set": {"last_error": str(e)}},
        )
        raise MailDispatchFailure(str(e)) from e

    outbox_collection.update_one(
        {"_id": message_id},
        {"$inc": {"attempts": 1}, "$set": {"status": "sent", "sent_at": _now(), "last_error": None}},
    )
    logger.info("Mail %s sent to %s", message_id, message["to"])

def dispatch_pending(to: Optional[str] = None) -> tuple[int, int]:
    query = {"status": "pending"}
    if to:
        query["to"] = to
    pending = list(outbox_collection.find(query, {"_id": 1}).sort("created_at", pymongo.ASCENDING))
    sent = failed = 0
    for message in pending:
        try:
            dispatch_mail(message["_id"])
            sent += 1
        except MailDispatchFailure:
            failed += 1
    return sent, failed

# --------------------------------------------------------------------------
# ACCOUNT SERVICE
# --------------------------------------------------------------------------

def ensure_admin():
    if ADMIN_PASSWORD == DEFAULT_ADMIN_PASSWORD:
        logger.warning("ADMIN_PASSWORD is not set; admin %s uses the built-in default password", ADMIN_EMAIL)
    if users_collection.find_one({"email": ADMIN_EMAIL}, {"_id": 1}):
        return
    try:
        users_collection.insert_one({
            "email": ADMIN_EMAIL,
            "hashed_password": get_password_hash(ADMIN_PASSWORD),
            "name": "Admin User",
            "phone": "01234567890",
            "address": "Admin HQ",
            "security_question": "What is the secret word?",
            "security_answer_hash": hash_security_answer("admin"),
            "is_verified": True,
            "is_admin": True,
            "created_at": _now(),
        })
        logger.info("Admin user %s created", ADMIN_EMAIL)
    except DuplicateKeyError:
        logger.debug("Admin user %s was created concurrently", ADMIN_EMAIL)

def perform_signup(user_data: SignupRequest) -> dict:
    verification_code = generate_verification_code()
    user_doc = {
        "email": user_data.email,
        "hashed_password": get_password_hash(user_data.password),
        "name": user_data.name,
        "phone": user_data.phone,
        "address": user_data.address,
        "security_question": user_data.security_question,
        "security_answer_hash": hash_security_answer(user_data.security_answer),
        "is_verified": False,
        "is_admin": False,
        "verification_code": verification_code,
        "created_at": _now(),
    }
    try:
        users_collection.insert_one(user_doc)
    except DuplicateKeyError as e:
        raise Conflict(f"User {user_data.email} already exists") from e
    logger.info("Created unverified account for %s", user_data.email)

    # The account stays even if the mail cannot be sent; the outbox keeps it pending.
    message_id = enqueue_verification_mail(user_data.email, verification_code)
    dispatch_mail(message_id)
    return public_user(user_doc)

def perform_verify(email: str, code: str) -> None:
    code = code.strip().upper()
    result = users_collection.update_one(
        {"email": email, "is_verified": False, "verification_code": code},
        {"$set": {"is_verified": True}, "$unset": {"verification_code": ""}},
    )
    if result.matched_count:
        logger.info("Account %s verified", email)
        return
    if users_collection.find_one({"email": email}, {"_id": 1}) is None:
        raise NotFound(f"User {email} not found")
    raise InvalidCode(f"Invalid verification code for {email}")

def perform_resend_verification(email: str) -> None:
    user = users_collection.find_one({"email": email})
    if user is None:
        raise NotFound(f"User {email} not found")
    if user.get("is_verified"):
        raise AlreadyVerified(f"User {email} is already verified")

    sent, failed = dispatch_pending(to=email)
    if failed:
        raise MailDispatchFailure(f"{failed} pending message(s) for {email} could not be sent")
    if not sent:
        message_id = enqueue_verification_mail(email, user["verification_code"])
        dispatch_mail(message_id)

def perform_login(email: str, password: str) -> dict:
    user = users_collection.find_one({"email": email})
    if user is None:
        pwd_context.dummy_verify()
        raise InvalidCredentials()
    if not verify_password(password, user["hashed_password"]):
        raise InvalidCredentials()
    if not user.get("is_verified"):
        raise Unverified(f"User {email} is not verified")
    return user

def perform_request_password_reset(email: str) -> str:
    user = users_collection.find_one({"email": email}, {"security_question": 1})
    if user is None:
        raise NotFound(f"User {email} not found")
    return user["security_question"]

def perform_complete_password_reset(email: str, answer: str, new_password: str) -> None:
    user = users_collection.find_one({"email": email})
    if user is None:
        raise NotFound(f"User {email} not found")
    stored_answer = user.get("security_answer_hash") or user.get("security_answer")
    if not stored_answer or not verify_security_answer(answer, stored_answer):
        raise WrongAnswer(f"Wrong security answer for {email}")
    users_collection.update_one({"email": email}, {"$set": {"hashed_password": get_password_hash(new_password)}})
    logger.info("Password reset for %s", email)

def perform_update_profile(email: str, user_data: UserUpdateProfile) -> dict:
    update_fields = user_data.model_dump(exclude_unset=True, exclude_none=True)
    if not update_fields:
        raise NotFound("No fields provided for update")

    # Only match when at least one field actually changes, so a no-op reads as not found.
    changed = [{field: {"$ne": value}} for field, value in update_fields.items()]
    result = users_collection.update_one({"email": email, "$or": changed}, {"$set": update_fields})
    if result.matched_count == 0:
        raise NotFound(f"User {email} not found or data is the same")
    return public_user(users_collection.find_one({"email": email}))

def list_users() -> List[dict]:
    return [public_user(user) for user in users_collection.find({"is_admin": {"$ne": True}})]

# --------------------------------------------------------------------------
# HISTORY STORE
# --------------------------------------------------------------------------

def save_history(email: str, history: History) -> None:
    history_collection.update_one(
        {"email": email},
        {"$set": {"history": history.model_dump(by_alias=True), "updated_at": _now()}},
        upsert=True,
    )

def load_history(email: str) -> Optional[dict]:
    record = history_collection.find_one({"email": email}, {"_id": 0, "history": 1})
    if record is None:
        return None
    return record["history"]

# --------------------------------------------------------------------------
# FASTAPI APP
# --------------------------------------------------------------------------
app = FastAPI(title="Langgol Accounts API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def startup_event():
    init_db()
    ensure_admin()
    sent, failed = dispatch_pending()
    if sent or failed:
        logger.info("Outbox flushed at startup: %d sent, %d still pending", sent, failed)

@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError):
    return account_error_response(request, exc)

def account_error_response(request: Request, exc: AccountError, status_code: Optional[int] = None) -> JSONResponse:
    logger.debug("%s: %s", exc.error, exc.detail)
    content = {
        "success": False,
        "error": exc.error,
        "message": localize(exc.error, preferred_language(request)),
    }
    if isinstance(exc, (InvalidCredentials, Unverified)):
        content["reason"] = exc.error
    return JSONResponse(status_code=status_code or exc.status_code, content=content)

# --------------------------------------------------------------------------
# AUTH DEPENDENCY
# --------------------------------------------------------------------------

def get_current_user_dependency(request: Request):
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
        if scheme.lower() == "bearer" and credentials:
            token = credentials
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            raise HTTPException(status_code=401, detail="Could not validate credentials")
    except JWTError:
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    user_doc = users_collection.find_one({"email": email})
    if user_doc is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user_doc

def get_admin_user_dependency(current_user: dict = Depends(get_current_user_dependency)):
    if not current_user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user

def require_owner_or_admin(email: str, current_user: dict):
    if current_user["email"] != email and not current_user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Access denied")

# --------------------------------------------------------------------------
# FASTAPI ENDPOINTS
# --------------------------------------------------------------------------

@app.post("/signup", status_code=201)
def signup_endpoint(user_data: SignupRequest, request: Request):
    perform_signup(user_data)
    return {"success": True, "message": localize("signup_success", preferred_language(request))}

@app.post("/verify")
def verify_endpoint(data: VerifyRequest, request: Request):
    try:
        perform_verify(data.email, data.code)
    except InvalidCode as e:
        return account_error_response(request, e, status_code=200)
    return {"success": True}

@app.post("/resend-verification")
def resend_verification_endpoint(data: EmailRequest):
    perform_resend_verification(data.email)
    return {"success": True}

@app.post("/login")
def login_endpoint(form_data: LoginRequest, response: Response):
    user = perform_login(form_data.email, form_data.password)

    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(data={"sub": user["email"]}, expires_delta=access_token_expires)

    response.set_cookie(key=ACCESS_TOKEN_COOKIE, value=access_token, httponly=True, max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60, samesite="Lax", path="/")
    return {"success": True, "user": public_user(user)}

@app.post("/logout")
def logout_endpoint(response: Response):
    response.delete_cookie(key=ACCESS_TOKEN_COOKIE, path="/")
    return {"success": True}

@app.post("/request-password-reset")
def request_password_reset_endpoint(data: EmailRequest):
    return {"question": perform_request_password_reset(data.email)}

@app.post("/complete-password-reset")
def complete_password_reset_endpoint(data: CompletePasswordResetRequest, request: Request):
    perform_complete_password_reset(data.email, data.answer, data.new_password)
    return {"success": True, "message": localize("reset_success", preferred_language(request))}

@app.put("/users/{email}")
def update_user_endpoint(email: EmailStr, user_data: UserUpdateProfile, current_user: dict = Depends(get_current_user_dependency)):
    require_owner_or_admin(email, current_user)
    return {"success": True, "user": perform_update_profile(email, user_data)}

@app.get("/users")
def list_users_endpoint(admin: dict = Depends(get_admin_user_dependency)):
    return list_users()

@app.post("/history")
def save_history_endpoint(data: HistorySaveRequest, current_user: dict = Depends(get_current_user_dependency)):
    require_owner_or_admin(data.email, current_user)
    save_history(data.email, data.history)
    return {"success": True}

@app.get("/history/{email}")
def load_history_endpoint(email: EmailStr, current_user: dict = Depends(get_current_user_dependency)):
    require_owner_or_admin(email, current_user)
    return load_history(email)

@app.post("/outbox/flush")
def flush_outbox_endpoint(admin: dict = Depends(get_admin_user_dependency)):
    sent, failed = dispatch_pending()
    return {"sent": sent, "pending": failed}


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("--- Starting Langgol Accounts API ---")
    print("Open: http://127.0.0.1:8000/docs")
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
