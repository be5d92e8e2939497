"""Users service: JSON body parsing, request logging, /users routes.

Run with:
    python main.py

or, under any ASGI server:
    uvicorn main:app

Available endpoints:
    GET    /users           - List all users
    POST   /users           - Create a new user
    GET    /users/:user_id  - Get user by ID
    DELETE /users/:user_id  - Delete user
"""

import logging

from routes.users import user_routes

from dispatch_pipeline import (
    JSONBodyParser,
    Pipeline,
    PipelineConfig,
    RequestLogger,
    Router,
    create_app,
)

PORT = 3000


def create_pipeline() -> Pipeline:
    """Wire the router and middleware chain."""
    router = Router()
    router.mount("/users", user_routes)

    pipeline = Pipeline(router, config=PipelineConfig(port=PORT))
    pipeline.use(JSONBodyParser())
    pipeline.use(RequestLogger())
    return pipeline


pipeline = create_pipeline()
app = create_app(pipeline)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    print(f"Server running on http://localhost:{PORT}")
    pipeline.start()
