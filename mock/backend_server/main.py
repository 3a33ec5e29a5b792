from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pathlib import Path
import json
import os
import uuid

app = FastAPI(title="Mock Backend Server", version="1.0.0")
# Support both local development and Docker
DATA_DIR = Path("/backend_stub") if os.path.exists("/backend_stub") else Path(__file__).resolve().parents[1] / "backend_stub"

# user_id -> {item_id: item}
ITEMS: dict = {}
# user_ids whose aggregator credentials are "revoked" (items endpoint answers 403)
FORBIDDEN_USERS = {"user_forbidden"}


def _load(name: str) -> dict:
    file = DATA_DIR / name
    if not file.exists():
        raise HTTPException(status_code=404, detail="stub not found")
    return json.loads(file.read_text())


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/pluggy/create-token")
async def create_token(request: Request):
    body = await request.json()
    user_id = body.get("userId")
    return {"accessToken": f"connect-{uuid.uuid4()}", "existingItems": list(ITEMS.get(user_id, {}).values())}


@app.post("/pluggy/sync")
async def sync(request: Request):
    body = await request.json()
    user_id, item_id = body.get("userId"), body.get("itemId")
    payload = _load("sync_item.json")
    ITEMS.setdefault(user_id, {})[item_id] = {
        "id": item_id,
        "connector": {"name": "Nubank", "imageUrl": "https://cdn.pluggy.ai/assets/connector-icons/212.svg"},
        "status": "UPDATED",
    }
    for entry in payload["accounts"]:
        entry["account"]["itemId"] = item_id
    return payload


@app.post("/pluggy/trigger-sync", status_code=202)
async def trigger_sync(request: Request):
    return {}


@app.get("/pluggy/items")
def items(userId: str):
    if userId in FORBIDDEN_USERS:
        return JSONResponse(status_code=403, content={"error": "Pluggy nao autorizou a requisicao."})
    return {"items": list(ITEMS.get(userId, {}).values())}


@app.get("/pluggy/db-items/{user_id}")
def db_items(user_id: str):
    return {"items": list(ITEMS.get(user_id, {}).values())}


@app.delete("/pluggy/item/{item_id}")
def delete_item(item_id: str, userId: str):
    if ITEMS.get(userId, {}).pop(item_id, None) is None:
        return JSONResponse(status_code=404, content={"error": "Item not found"})
    return {"success": True}
