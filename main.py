from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from dotenv import load_dotenv
import logging
import sys

from routes import course_routes, paper_routes, tutor_routes
from utils.exceptions import PaperTutorError
from utils.model_config import ModelConfig

# Configure logging
logger = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('app.log')
    ]
)

load_dotenv()

app = FastAPI(title="PaperTutor API", description="Personalized mini-courses from research papers")


@app.exception_handler(PaperTutorError)
async def papertutor_exception_handler(request: Request, exc: PaperTutorError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    try:
        detail = jsonable_encoder(exc.errors())
    except UnicodeDecodeError:
        # Multipart bodies can carry raw PDF bytes
        detail = [{"loc": ["binary_content"], "msg": "Invalid binary data in request", "type": "binary_data_error"}]
    return JSONResponse(
        status_code=422,
        content={"error": "INVALID_REQUEST", "message": "Request validation failed", "detail": detail},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(paper_routes.router)
app.include_router(course_routes.router)
app.include_router(tutor_routes.router)


@app.get("/")
async def root():
    return {"greeting": "Hello!", "message": "Welcome to PaperTutor!"}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "providers": [provider.value for provider in ModelConfig.get_available_providers()],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
