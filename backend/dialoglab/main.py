import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .channels import ObserverHub
from .conversation import Conversation
from .gateway import InferenceClient
from .quiz import ImageQuiz, QuizLog, VocabRunStore, VocabStats
from .routers import dialog, image_quiz, teacher, vocabulary
from .sessions import SessionStore
from .settings import settings

log_level = settings.log_level.upper()
logging.basicConfig(
	level=log_level,
	format="%(levelname)s:%(name)s: [%(funcName)s] - %(message)s",
)

# httpx logs every gateway request at INFO level
if log_level != "DEBUG":
	logging.getLogger("httpx").setLevel(logging.WARNING)
	logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	owns_gateway = app.state.gateway is None
	if owns_gateway:
		# Fails fast when OPENAI_API_KEY is missing
		app.state.gateway = InferenceClient()
	app.state.conversation = Conversation(app.state.store, app.state.gateway, app.state.hub.publish)
	Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
	logger.info("DialogLab ready on port %s", settings.port)
	yield
	logger.info("Shutting down DialogLab...")
	await app.state.hub.close()
	if owns_gateway:
		await app.state.gateway.aclose()
		app.state.gateway = None


def create_app(gateway: Optional[Any] = None) -> FastAPI:
	app = FastAPI(title="DialogLab English Coach", lifespan=lifespan)
	app.state.gateway = gateway
	app.state.store = SessionStore()
	app.state.hub = ObserverHub()
	app.state.image_quiz = ImageQuiz()
	app.state.vocab_runs = VocabRunStore(ttl_seconds=settings.vocab_run_ttl_minutes * 60)
	app.state.quiz_log = QuizLog()
	app.state.student_sockets = {}
	app.state.vocab_stats = VocabStats()

	app.add_middleware(
		CORSMiddleware,
		allow_origins=settings.origins,
		allow_methods=["GET", "POST", "PUT", "DELETE"],
		allow_headers=["Content-Type", "Authorization"],
	)

	@app.exception_handler(StarletteHTTPException)
	async def http_exception_handler(request: Request, exc: StarletteHTTPException):
		return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

	@app.exception_handler(Exception)
	async def general_exception_handler(request: Request, exc: Exception):
		logger.error(f"Unhandled exception for {request.method} {request.url}: {exc}", exc_info=True)
		return JSONResponse(
			status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
			content={"error": "An internal server error occurred."},
		)

	app.include_router(dialog.router)
	app.include_router(vocabulary.router)
	app.include_router(image_quiz.router)
	app.include_router(teacher.router)

	# Uploaded quiz images must be reachable by URL for the vision model
	app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")

	@app.get("/health")
	async def health(request: Request):
		return {"status": "ok", "gateway_configured": request.app.state.gateway is not None}

	return app


app = create_app()


def run() -> None:
	uvicorn.run("dialoglab.main:app", host="0.0.0.0", port=settings.port)
