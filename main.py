import time
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import database
import store
from auth import AuthContext, TokenManager, get_token_manager, require_auth
from config import get_settings
from errors import ApiError, first_error
from logger import get_logger
from schemas import (
    AuthResponse,
    LoginRequest,
    TodoCreate,
    TodoUpdate,
    TodoView,
    UserCreate,
    UserUpdate,
    UserView,
)

log = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    owns_connection = database.db is None
    if owns_connection:
        database.connect()
    log.info("Todo API started")
    yield
    if owns_connection:
        database.disconnect()
    log.info("Todo API stopped")


app = FastAPI(title="Todo API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        log.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, status_code, elapsed_ms)


# -------------------- Errors --------------------

@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        # internal detail goes to the log only
        log.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": ApiError.message})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": first_error(exc.errors())})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    log.exception("%s %s: store error", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": ApiError.message})


# -------------------- Routes --------------------

@app.get("/")
def root():
    return {"message": "Todo API running"}


@app.post("/users", response_model=AuthResponse)
def register(req: UserCreate, tokens: TokenManager = Depends(get_token_manager)):
    user = store.create_user(req.email, req.password)
    token = tokens.issue(user)
    return AuthResponse(user=UserView.from_document(user), token=token)


@app.post("/users/login", response_model=AuthResponse)
def login(req: LoginRequest, tokens: TokenManager = Depends(get_token_manager)):
    user = store.find_by_credentials(req.email, req.password)
    if user is None:
        raise HTTPException(400, "Invalid credentials")
    token = tokens.issue(user)
    log.info("User %s logged in (%d active sessions)", user["_id"], len(user["tokens"]))
    return AuthResponse(user=UserView.from_document(user), token=token)


@app.post("/users/logout")
def logout(ctx: AuthContext = Depends(require_auth),
           tokens: TokenManager = Depends(get_token_manager)):
    tokens.revoke(ctx.user, ctx.token)
    log.info("User %s logged out", ctx.user_id)
    return Response(status_code=200)


@app.post("/users/logoutAll")
def logout_all(ctx: AuthContext = Depends(require_auth),
               tokens: TokenManager = Depends(get_token_manager)):
    tokens.revoke_all(ctx.user)
    log.info("User %s logged out of all sessions", ctx.user_id)
    return Response(status_code=200)


@app.get("/users/me", response_model=UserView)
def read_me(ctx: AuthContext = Depends(require_auth)):
    return UserView.from_document(ctx.user)


@app.patch("/users/me", response_model=UserView)
def update_me(req: UserUpdate, ctx: AuthContext = Depends(require_auth)):
    user = store.update_user(ctx.user, req.model_dump(exclude_unset=True), ctx.token)
    return UserView.from_document(user)


@app.delete("/users/me", response_model=UserView)
def delete_me(ctx: AuthContext = Depends(require_auth)):
    user = store.delete_user(ctx.user)
    return UserView.from_document(user)


@app.post("/todos", response_model=TodoView, response_model_exclude_none=True)
def create_todo(item: TodoCreate, ctx: AuthContext = Depends(require_auth)):
    todo = store.create_todo(ctx.user, item.model_dump(exclude_none=True))
    return TodoView.from_document(todo)


@app.get("/todos", response_model=List[TodoView], response_model_exclude_none=True)
def list_todos(ctx: AuthContext = Depends(require_auth)):
    return [TodoView.from_document(d) for d in store.list_todos(ctx.user)]


@app.get("/todos/{todo_id}", response_model=TodoView, response_model_exclude_none=True)
def read_todo(todo_id: str, ctx: AuthContext = Depends(require_auth)):
    return TodoView.from_document(store.get_todo(ctx.user, todo_id))


@app.patch("/todos/{todo_id}", response_model=TodoView, response_model_exclude_none=True)
def update_todo(todo_id: str, item: TodoUpdate, ctx: AuthContext = Depends(require_auth)):
    return TodoView.from_document(store.update_todo(ctx.user, todo_id, item.changes()))


@app.delete("/todos/{todo_id}", response_model=TodoView, response_model_exclude_none=True)
def delete_todo(todo_id: str, ctx: AuthContext = Depends(require_auth)):
    return TodoView.from_document(store.delete_todo(ctx.user, todo_id))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
