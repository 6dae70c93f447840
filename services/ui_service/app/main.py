# services/ui_service/app/main.py

import gradio as gr
import fastapi
import httpx
import logging
import mimetypes
import os
import tempfile
import asyncio
import json
from urllib.parse import quote
from core.config import settings
from core.utils import parse_label_input
from typing import Optional, List, Dict, Any, Tuple

# Setup logger
logger = logging.getLogger("FileManager_Core").getChild("UIService")

# Global httpx client for calling the file API
api_client = httpx.AsyncClient(base_url=settings.FILE_API_URL, timeout=120.0)
# Downloaded copies handed to Gradio; removed when the process exits
_download_dir = tempfile.TemporaryDirectory(prefix="filemanager_")

NOT_LOGGED_IN = "Please log in first."


# --- Helper Functions for API Calls ---
def _auth_headers(token: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


async def call_file_api(method: str, endpoint: str, token: Optional[str] = None, **kwargs) -> Dict:
    """Helper to call the file API and unwrap its response envelope."""
    try:
        response = await api_client.request(method.upper(), endpoint, headers=_auth_headers(token), **kwargs)
        response.raise_for_status(); api_response = response.json()
        if api_response.get("status") == "success": return {"data": api_response.get("data"), "message": api_response.get("message")}
        error_msg = api_response.get("message", "Unknown API error")
        logger.error(f"File API returned error at {endpoint}: {error_msg} (Status: {response.status_code})")
        return {"error": f"API Error ({response.status_code}): {error_msg}"}
    except httpx.HTTPStatusError as e:
        downstream_error = e.response.text
        try: downstream_error = e.response.json().get('detail', e.response.text)
        except Exception: pass
        logger.error(f"API Error ({e.response.status_code}) calling {endpoint}: {downstream_error}")
        return {"error": f"{downstream_error}"}
    except httpx.RequestError as e: logger.error(f"Network error calling file API endpoint {endpoint}: {e}"); return {"error": f"Cannot reach file API at {settings.FILE_API_URL}"}
    except Exception as e: logger.error(f"Unexpected error calling file API endpoint {endpoint}: {e}", exc_info=True); return {"error": f"An unexpected error occurred while contacting the file API: {e}"}


async def fetch_file_bytes(filename: str, token: str) -> Tuple[Optional[bytes], Optional[str]]:
    """Downloads a stored file; returns (content, None) or (None, error message)."""
    try:
        response = await api_client.get(f"/files/{quote(filename, safe='')}/download", headers=_auth_headers(token))
        response.raise_for_status()
        return response.content, None
    except httpx.HTTPStatusError as e:
        detail = e.response.text
        try: detail = e.response.json().get('detail', detail)
        except Exception: pass
        return None, detail
    except httpx.RequestError as e:
        logger.error(f"Network error downloading '{filename}': {e}")
        return None, f"Cannot reach file API at {settings.FILE_API_URL}"


# --- Account ---
async def login_ui(email: str, password: str):
    result = await call_file_api("POST", "/auth/login", json={"email": email, "password": password})
    if "error" in result:
        return f"Login failed: {result['error']}", None, None
    session = result["data"]
    logger.info(f"User {session.get('email')} logged in via UI.")
    return f"Logged in as {session.get('email')}.", session["access_token"], session.get("email")


async def signup_ui(email: str, password: str):
    result = await call_file_api("POST", "/auth/signup", json={"email": email, "password": password})
    if "error" in result:
        return f"Sign-up failed: {result['error']}", None, None
    data = result["data"] or {}
    session = data.get("session")
    if session:
        return f"Account created. Logged in as {data.get('email')}.", session["access_token"], data.get("email")
    return result.get("message") or "Account created. Check your email to confirm it.", None, None


def logout_ui():
    # Tokens are stateless on the server; dropping ours is enough
    return "Logged out.", None, None, [], gr.update(choices=[], value=None), None


# --- Upload Flow ---
async def analyze_ui(file_path: Optional[str], token: Optional[str]):
    """Sends the picked file for AI analysis and fills the editable suggestion fields."""
    empty = ("", "", "", "", None)
    if not token: return (NOT_LOGGED_IN,) + empty
    if not file_path: return ("Please choose a file first.",) + empty

    filename = os.path.basename(file_path)
    mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    content = await asyncio.to_thread(_read_bytes, file_path)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        size_mb = len(content) / (1024 * 1024)
        return (f"File is too large: {size_mb:.2f} MB. Max allowed is {settings.MAX_UPLOAD_BYTES / (1024 * 1024):g} MB.",) + empty

    result = await call_file_api("POST", "/files/analyze", token, files={"file": (filename, content, mime_type)})
    if "error" in result:
        return (f"AI analysis failed: {result['error']}",) + empty
    analysis = result["data"]
    return (
        "Review the suggestions, edit them if needed, then confirm the upload.",
        analysis["descriptive_filename"],
        ", ".join(analysis.get("tags", [])),
        ", ".join(analysis.get("categories", [])),
        analysis.get("extension", ""),
        analysis,
    )


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def begin_upload():
    return gr.update(interactive=False)


def end_upload():
    return gr.update(interactive=True)


async def confirm_upload_ui(file_path: Optional[str], edited_name: str, tags_text: str, categories_text: str,
                            analysis: Optional[Dict[str, Any]], token: Optional[str]):
    """
    Uploads the file under the confirmed name.

    The pending analysis is cleared after a successful upload, so a repeated
    click cannot store the same file twice.
    """
    if not token: return NOT_LOGGED_IN, analysis
    if not file_path or not analysis: return "Analyze a file first.", analysis
    if not edited_name or not edited_name.strip(): return "File name cannot be empty.", analysis

    try:
        tags = parse_label_input(tags_text)
        categories = parse_label_input(categories_text)
    except ValueError as e:
        return f"Invalid tags or categories: {e}", analysis

    extension = analysis.get("extension") or ""
    final_name = f"{edited_name.strip()}.{extension}" if extension else edited_name.strip()
    filename = os.path.basename(file_path)
    mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    content = await asyncio.to_thread(_read_bytes, file_path)

    result = await call_file_api(
        "POST", "/files/upload", token,
        files={"file": (filename, content, mime_type)},
        data={"descriptive_filename": final_name, "tags": json.dumps(tags), "categories": json.dumps(categories)},
    )
    if "error" in result:
        return f"File upload failed: {result['error']}", analysis
    logger.info(f"Uploaded '{final_name}' via UI.")
    return f"File uploaded successfully as '{result['data']['file_path']}'.", None


# --- File List & Actions ---
def _format_size(size: int) -> str:
    if size < 1024: return f"{size} B"
    if size < 1024 * 1024: return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def files_to_rows(files: List[Dict[str, Any]]) -> List[List[str]]:
    return [
        [f["name"], _format_size(f.get("size") or 0), ", ".join(f.get("tags") or []),
         ", ".join(f.get("categories") or []), (f.get("created_at") or "")[:19].replace("T", " ")]
        for f in files
    ]


async def list_files_ui(token: Optional[str]):
    if not token: return [], gr.update(choices=[], value=None), NOT_LOGGED_IN
    result = await call_file_api("GET", "/files", token)
    if "error" in result:
        return [], gr.update(choices=[], value=None), f"Could not load files: {result['error']}"
    files = result["data"] or []
    names = [f["name"] for f in files]
    return files_to_rows(files), gr.update(choices=names, value=None), f"{len(files)} file(s)."


async def refresh_files_ui(token: Optional[str]):
    """Reloads the table and selector without touching the status box."""
    rows, selector, _ = await list_files_ui(token)
    return rows, selector


async def rename_ui(selected: Optional[str], new_name: str, token: Optional[str]):
    if not token: return NOT_LOGGED_IN
    if not selected: return "Select a file first."
    if not new_name or not new_name.strip(): return "New file name cannot be empty."
    result = await call_file_api("PUT", f"/files/{quote(selected, safe='')}", token, json={"new_name": new_name.strip()})
    if "error" in result: return f"Failed to rename the file: {result['error']}"
    return f"Renamed to '{result['data']['name']}'."


async def delete_ui(selected: Optional[str], confirmed: bool, token: Optional[str]):
    if not token: return NOT_LOGGED_IN
    if not selected: return "Select a file first."
    if not confirmed: return "Tick 'Confirm delete' to delete the file."
    result = await call_file_api("DELETE", f"/files/{quote(selected, safe='')}", token)
    if "error" in result: return f"Failed to delete the file: {result['error']}"
    return f"Deleted '{selected}'."


async def download_ui(selected: Optional[str], token: Optional[str]):
    if not token: return None, NOT_LOGGED_IN
    if not selected: return None, "Select a file first."
    content, error = await fetch_file_bytes(selected, token)
    if error: return None, f"Download failed: {error}"
    target = os.path.join(_download_dir.name, selected)
    await asyncio.to_thread(_write_bytes, target, content)
    return target, f"Downloaded '{selected}'."


def _write_bytes(path: str, content: bytes) -> None:
    with open(path, "wb") as f:
        f.write(content)


async def share_ui(selected: Optional[str], token: Optional[str]):
    if not token: return "", NOT_LOGGED_IN
    if not selected: return "", "Select a file first."
    result = await call_file_api("POST", f"/files/{quote(selected, safe='')}/share", token)
    if "error" in result: return "", f"Could not create share link: {result['error']}"
    link = result["data"]
    minutes = link["expires_in"] // 60
    return link["url"], f"Share link valid for {minutes} minute(s). Copy it from the box."


# --- Assistant ---
def format_chat_reply(data: Dict[str, Any]) -> str:
    reply = data.get("reply", "")
    files = data.get("files") or []
    if not files:
        return reply
    lines = [reply, ""] + [f"- [{f['name']}]({f.get('url') or '#'})" for f in files]
    return "\n".join(lines)


async def chat_ui(message: str, history: List[Dict[str, str]], token: Optional[str]):
    history = list(history or [])
    if not message or not message.strip():
        return history, ""
    history.append({"role": "user", "content": message})
    if not token:
        history.append({"role": "assistant", "content": NOT_LOGGED_IN})
        return history, ""
    result = await call_file_api("POST", "/assistant/chat", token, json={"message": message})
    if "error" in result:
        reply = "Error connecting to AI service. Please try again."
    else:
        reply = format_chat_reply(result["data"])
    history.append({"role": "assistant", "content": reply})
    return history, ""


async def ask_file_ui(question: str, selected: Optional[str], history: List[Dict[str, str]], token: Optional[str]):
    history = list(history or [])
    if not question or not question.strip():
        return history, question
    if not selected:
        history.append({"role": "assistant", "content": "Select a file in 'My Files' first."})
        return history, question
    history.append({"role": "user", "content": f"[{selected}] {question}"})
    if not token:
        history.append({"role": "assistant", "content": NOT_LOGGED_IN})
        return history, ""
    result = await call_file_api("POST", "/assistant/ask", token, json={"filename": selected, "question": question})
    if "error" in result:
        reply = f"Error connecting to document analysis service: {result['error']}"
    else:
        reply = result["data"]["answer"]
    history.append({"role": "assistant", "content": reply})
    return history, ""


# --- Gradio Interface ---
with gr.Blocks(theme=gr.themes.Soft(), title="AI File Manager") as demo:
    gr.Markdown("# AI File Manager")
    gr.Markdown("Upload files, let AI name and tag them, then manage and search them.")
    auth_token = gr.State(None)
    user_email = gr.State(None)
    pending_analysis = gr.State(None)

    with gr.Tabs():
        with gr.TabItem("Account"):
            with gr.Row():
                email_input = gr.Textbox(label="Email", placeholder="you@example.com")
                password_input = gr.Textbox(label="Password", type="password")
            with gr.Row():
                login_button = gr.Button("Log in", variant="primary"); signup_button = gr.Button("Sign up"); logout_button = gr.Button("Log out")
            account_status = gr.Textbox(label="Status", interactive=False)
        with gr.TabItem("Upload"):
            with gr.Row():
                with gr.Column(scale=2):
                    file_input = gr.File(label="Drop a JPEG, PNG, PDF or DOCX (max 5 MB)", file_types=[".jpg", ".jpeg", ".png", ".pdf", ".docx"], type="filepath")
                    analyze_button = gr.Button("Analyze with AI", variant="primary")
                with gr.Column(scale=3):
                    suggested_name = gr.Textbox(label="File name (without extension)")
                    extension_display = gr.Textbox(label="Extension", interactive=False)
                    tags_input = gr.Textbox(label="Tags (comma-separated)")
                    categories_input = gr.Textbox(label="Categories (comma-separated)")
                    confirm_button = gr.Button("Confirm upload", variant="primary")
            upload_status = gr.Textbox(label="Status", interactive=False, lines=2)
        with gr.TabItem("My Files"):
            refresh_button = gr.Button("Refresh")
            files_table = gr.Dataframe(headers=["Name", "Size", "Tags", "Categories", "Uploaded"], interactive=False)
            file_selector = gr.Dropdown(label="Selected file", choices=[], interactive=True)
            with gr.Row():
                rename_input = gr.Textbox(label="New name (extension kept)"); rename_button = gr.Button("Rename")
            with gr.Row():
                delete_confirm = gr.Checkbox(label="Confirm delete"); delete_button = gr.Button("Delete", variant="stop")
            with gr.Row():
                download_button = gr.Button("Download"); share_button = gr.Button("Share link")
            download_output = gr.File(label="Downloaded file", interactive=False)
            share_output = gr.Textbox(label="Share URL", interactive=False, show_copy_button=True)
            files_status = gr.Textbox(label="Status", interactive=False)
        with gr.TabItem("Assistant"):
            chatbot = gr.Chatbot(type="messages", value=[{"role": "assistant", "content": "Hi! I'm your AI assistant. I can help you search for files or answer general questions. What can I help you with today?"}])
            with gr.Row():
                chat_input = gr.Textbox(label="Message", placeholder="e.g. find my invoice documents", scale=4); send_button = gr.Button("Send", variant="primary", scale=1)
            ask_button = gr.Button("Ask about the file selected in 'My Files'")

    # --- Connect UI elements to functions ---
    login_button.click(login_ui, inputs=[email_input, password_input], outputs=[account_status, auth_token, user_email])\
        .then(refresh_files_ui, inputs=[auth_token], outputs=[files_table, file_selector])
    signup_button.click(signup_ui, inputs=[email_input, password_input], outputs=[account_status, auth_token, user_email])
    logout_button.click(logout_ui, outputs=[account_status, auth_token, user_email, files_table, file_selector, pending_analysis])

    analyze_button.click(analyze_ui, inputs=[file_input, auth_token], outputs=[upload_status, suggested_name, tags_input, categories_input, extension_display, pending_analysis], concurrency_limit=1)
    confirm_button.click(begin_upload, outputs=[confirm_button])\
        .then(confirm_upload_ui, inputs=[file_input, suggested_name, tags_input, categories_input, pending_analysis, auth_token], outputs=[upload_status, pending_analysis], concurrency_limit=1)\
        .then(end_upload, outputs=[confirm_button])\
        .then(refresh_files_ui, inputs=[auth_token], outputs=[files_table, file_selector])

    refresh_button.click(list_files_ui, inputs=[auth_token], outputs=[files_table, file_selector, files_status])
    rename_button.click(rename_ui, inputs=[file_selector, rename_input, auth_token], outputs=[files_status])\
        .then(refresh_files_ui, inputs=[auth_token], outputs=[files_table, file_selector])
    delete_button.click(delete_ui, inputs=[file_selector, delete_confirm, auth_token], outputs=[files_status])\
        .then(refresh_files_ui, inputs=[auth_token], outputs=[files_table, file_selector])
    download_button.click(download_ui, inputs=[file_selector, auth_token], outputs=[download_output, files_status])
    share_button.click(share_ui, inputs=[file_selector, auth_token], outputs=[share_output, files_status])

    send_button.click(chat_ui, inputs=[chat_input, chatbot, auth_token], outputs=[chatbot, chat_input])
    chat_input.submit(chat_ui, inputs=[chat_input, chatbot, auth_token], outputs=[chatbot, chat_input])
    ask_button.click(ask_file_ui, inputs=[chat_input, file_selector, chatbot, auth_token], outputs=[chatbot, chat_input])


# --- Mount Gradio app within FastAPI ---
app = fastapi.FastAPI()
@app.get("/")
async def root():
    return {"message": "AI File Manager UI is running. Access the Gradio interface at /ui"}
app = gr.mount_gradio_app(app, demo, path="/ui")
