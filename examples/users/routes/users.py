"""User collection and item endpoints, mounted at /users."""

from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException

from dispatch_pipeline import JSON_BODY, RequestContext, ResponseBuilder, Router


class UserCreate(BaseModel):
    name: str
    email: str


user_routes = Router()

# In-memory storage for demonstration purposes
_users_db: dict[str, dict[str, str]] = {}
_next_id = 1


@user_routes.get("/")
async def list_users(ctx: RequestContext, response: ResponseBuilder) -> dict:
    """List all users."""
    users = list(_users_db.values())
    return {"users": users, "count": len(users)}


@user_routes.get("/:user_id")
async def get_user(ctx: RequestContext, response: ResponseBuilder) -> dict:
    """Get a user by ID."""
    user_id = ctx.path_params["user_id"]
    if user_id not in _users_db:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return _users_db[user_id]


@user_routes.post("/")
async def create_user(ctx: RequestContext, response: ResponseBuilder) -> dict:
    """Create a new user."""
    global _next_id

    try:
        payload = UserCreate.model_validate(ctx.attributes.get(JSON_BODY))
    except ValidationError as exc:
        detail = exc.errors(include_url=False, include_context=False)
        raise HTTPException(status_code=422, detail=detail) from exc

    for existing_user in _users_db.values():
        if existing_user["email"] == payload.email:
            raise HTTPException(
                status_code=400,
                detail=f"Email {payload.email} is already registered",
            )

    user_id = str(_next_id)
    _next_id += 1

    new_user = {"id": user_id, "name": payload.name, "email": payload.email}
    _users_db[user_id] = new_user
    response.set_status(201)
    return new_user


@user_routes.delete("/:user_id")
async def delete_user(ctx: RequestContext, response: ResponseBuilder) -> None:
    """Delete a user."""
    user_id = ctx.path_params["user_id"]
    if _users_db.pop(user_id, None) is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    response.send_bytes(b"", status=204)
