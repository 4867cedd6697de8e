import json
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

import database
import notifications
import orders
import users
from auth import router as auth_router
from errors import NotFoundError
from graphql_api import graphql_app
from logging_config import setup_logging
from realtime import ConnectionHub, room_for
from schemas import Category, Product, ProductVariant, User
from security import hash_password, token_from_connection

logger = structlog.get_logger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    app.state.hub = ConnectionHub()
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("database_not_configured")
    logger.info("startup_complete")
    yield
    await app.state.hub.close()
    logger.info("shutdown_complete")


app = FastAPI(title="Grocery Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(graphql_app, prefix="/graphql")


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Grocery application backend running"}


@app.get("/test")
def health():
    report = {
        "backend": "running",
        "database": "not configured",
        "collections": [],
        "indexes": {},
    }
    if database.db is None:
        return report
    try:
        report["collections"] = sorted(database.db.list_collection_names())
        report["indexes"] = database.index_report()
        report["database"] = "connected"
    except PyMongoError as exc:
        logger.warning("database_check_failed", error=str(exc))
        report["database"] = f"error: {str(exc)[:80]}"
    return report


# ----------------------- Realtime -----------------------
async def _socket_user(websocket: WebSocket) -> Optional[dict]:
    token = websocket.query_params.get("token") or token_from_connection(websocket)
    return await run_in_threadpool(users.session_user, token)


async def _handle_client_event(websocket: WebSocket, user: dict, room: str, event: Any, data: dict):
    hub: ConnectionHub = websocket.app.state.hub
    if event == "join":
        # the room comes from the session; fields the client declares are ignored
        await websocket.send_json({"event": "joined", "data": {"room": room}})
    elif event == "orderUpdated":
        if user["role"] != "admin":
            await websocket.send_json({"event": "error", "data": {"message": "Admin only"}})
            return
        try:
            order = await run_in_threadpool(orders.get_order, str(data.get("id", "")))
        except NotFoundError as exc:
            await websocket.send_json({"event": "error", "data": {"message": exc.message}})
            return
        await notifications.broadcast_order_update(hub, order)
    elif event == "check":
        logger.info("client_check", user_id=user["id"], message=data.get("message"))
    else:
        logger.info("unknown_client_event", user_id=user["id"], client_event=event)


@app.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    user = await _socket_user(websocket)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub: ConnectionHub = websocket.app.state.hub
    room = room_for(user)
    await websocket.accept()
    await hub.join(room, websocket)
    await websocket.send_json({"event": "joined", "data": {"room": room}})
    try:
        while True:
            message = await websocket.receive_text()
            try:
                frame = json.loads(message)
            except ValueError:
                logger.info("malformed_client_frame", user_id=user["id"])
                continue
            if isinstance(frame, dict):
                data = frame.get("data")
                if not isinstance(data, dict):
                    data = {}
                await _handle_client_event(websocket, user, room, frame.get("event"), data)
    except WebSocketDisconnect:
        logger.info("socket_disconnected", user_id=user["id"], room=room)
    finally:
        await hub.leave(room, websocket)


# ----------------------- Seed Demo Data -----------------------
DEMO_CATALOG = {
    "Fruits & Vegetables": {
        "Fresh Fruits": [
            {
                "name": "Banana Robusta",
                "description": "Naturally ripened, rich in potassium.",
                "image_url": "https://images.unsplash.com/photo-1571771894821-ce9b6c11b08e",
                "variants": [
                    {"weight": "6 pcs", "price": 42, "mrp": 50},
                    {"weight": "12 pcs", "price": 80, "mrp": 96},
                ],
            },
            {
                "name": "Shimla Apple",
                "description": "Crisp and sweet hill apples.",
                "image_url": "https://images.unsplash.com/photo-1560806887-1e4cd0b6cbd6",
                "variants": [
                    {"weight": "500g", "price": 95, "mrp": 110},
                    {"weight": "1kg", "price": 180, "mrp": 210},
                ],
            },
        ],
        "Fresh Vegetables": [
            {
                "name": "Tomato Hybrid",
                "description": "Firm red tomatoes for everyday cooking.",
                "image_url": "https://images.unsplash.com/photo-1546094096-0df4bcaaa337",
                "variants": [
                    {"weight": "500g", "price": 18, "mrp": 24},
                    {"weight": "1kg", "price": 34, "mrp": 45},
                ],
            },
        ],
    },
    "Dairy & Breakfast": {
        "Milk": [
            {
                "name": "Toned Milk",
                "description": "Pasteurised toned milk.",
                "image_url": "https://images.unsplash.com/photo-1563636619-e9143da7973b",
                "variants": [
                    {"weight": "500ml", "price": 27, "mrp": 27},
                    {"weight": "1L", "price": 54, "mrp": 54},
                ],
            },
        ],
        "Bread & Eggs": [
            {
                "name": "Brown Bread",
                "description": "Whole wheat sandwich loaf.",
                "image_url": "https://images.unsplash.com/photo-1509440159596-0249088772ff",
                "variants": [{"weight": "400g", "price": 45, "mrp": 50}],
            },
            {
                "name": "Farm Eggs",
                "description": "Protein-rich white eggs.",
                "image_url": "https://images.unsplash.com/photo-1582722872445-44dc5f7e3c8f",
                "variants": [
                    {"weight": "6 pcs", "price": 48, "mrp": 54},
                    {"weight": "12 pcs", "price": 92, "mrp": 108, "in_stock": False},
                ],
            },
        ],
    },
    "Staples": {
        "Atta & Rice": [
            {
                "name": "Basmati Rice",
                "description": "Long grain aged basmati.",
                "image_url": "https://images.unsplash.com/photo-1586201375761-83865001e31c",
                "variants": [
                    {"weight": "1kg", "price": 140, "mrp": 175},
                    {"weight": "5kg", "price": 650, "mrp": 820},
                ],
            },
        ],
    },
}


@app.post("/seed")
def seed():
    db = database.get_db()
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for top_name, subcategories in DEMO_CATALOG.items():
        top = db["category"].find_one({"name": top_name, "parent_category_id": None})
        top_id = str(top["_id"]) if top else database.create_document("category", Category(name=top_name))
        for sub_name, products in subcategories.items():
            sub = db["category"].find_one({"name": sub_name, "parent_category_id": top_id})
            sub_id = (
                str(sub["_id"])
                if sub
                else database.create_document("category", Category(name=sub_name, parent_category_id=top_id))
            )
            for p in products:
                variants = [ProductVariant(**v) for v in p["variants"]]
                product = Product(**{**p, "variants": variants}, category_id=sub_id)
                database.create_document("product", product)
    # create admin user if none
    if db["user"].count_documents({"role": "admin"}) == 0:
        admin = User(username="Admin", email="admin@grocery.com", password_hash=hash_password("admin123"), role="admin")
        users.create_user(admin)
    logger.info("demo_data_seeded")
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
