from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from exam_platform.core.config import settings
from exam_platform.core.database import SessionLocal
from exam_platform.core.exceptions import ExamPlatformError
from exam_platform.core.logging import configure_logging
from exam_platform.core.runtime import ExamRuntime
from exam_platform.endpoints import exam_attempt
from exam_platform.middleware.exceptions import (
    exam_platform_exception_handler,
    global_exception_handler,
    validation_exception_handler,
)
import exam_platform.models  # noqa: F401  registers every mapper

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, global_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ExamPlatformError, exam_platform_exception_handler)

app.include_router(exam_attempt.router, prefix="/exams", tags=["Exam Attempts"])

@app.on_event("startup")
async def startup_event():
    configure_logging()
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = ExamRuntime(settings, SessionLocal)
    app.state.runtime.start()

@app.on_event("shutdown")
async def shutdown_event():
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        runtime.shutdown()
        app.state.runtime = None

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
