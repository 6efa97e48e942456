import os
import json
import asyncio
import logging
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from starlette.responses import JSONResponse
from typing import Optional

from schemas import (
	LogEvent, UploadedDocument, GenerateRequest, ProfileRequest,
	ChatOpenRequest, ChatMessageRequest, ChatApplyRequest,
)
from agents import report_agent, chat_agent
from history import HistoryStore, JsonFileStorage
from pipeline import ReportGenerator, GenerationError
from editor import EditSession, SessionBusyError, SessionClosedError

logging.basicConfig(level=os.getenv("GOLDSTREAM_LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

EVENT_TIMEOUT = int(os.getenv("GOLDSTREAM_EVENT_TIMEOUT", "300"))

def _item_json(item):
	return item.model_dump(by_alias=True, exclude_none=True)

def _transcript_json(session):
	return [m.model_dump(by_alias=True, exclude_none=True) for m in session.transcript]

async def stream_events(event_queue: asyncio.Queue, task: asyncio.Task, generator: ReportGenerator, timeout: int = EVENT_TIMEOUT):
	"""Relay queued LogEvents as SSE frames until the run signals completion.

	If the stream ends early, whether from a timeout or the client going
	away, the pending run is abandoned and cancelled so its report is
	never filed.
	"""
	try:
		while True:
			try:
				evt = await asyncio.wait_for(event_queue.get(), timeout=timeout)
			except asyncio.TimeoutError:
				yield f"data: {json.dumps({'type': 'error', 'message': 'Timeout waiting for event.'})}\n\n"
				break
			if evt == "__DONE__":
				break
			yield f"data: {json.dumps(evt)}\n\n"
	finally:
		if not task.done():
			generator.abandon()
			task.cancel()
	await asyncio.gather(task, return_exceptions=True)
	yield f"data: {json.dumps({'type': 'complete'})}\n\n"

def create_app(store: Optional[HistoryStore] = None, generation_agent=report_agent, editing_agent=chat_agent) -> FastAPI:
	app = FastAPI()
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.state.store = store if store is not None else HistoryStore(JsonFileStorage())
	app.state.generator = ReportGenerator(app.state.store, agent=generation_agent)
	app.state.editing_agent = editing_agent
	app.state.session = None

	def close_session():
		if app.state.session is not None:
			app.state.session.close()
			app.state.session = None

	@app.get("/")
	async def root():
		return {"status": "Golden Data Stream API Running", "version": "1.0"}

	@app.post("/documents")
	async def upload_document(file: UploadFile):
		content = await file.read()
		text = content.decode("utf-8", errors="replace")
		return UploadedDocument(name=file.filename or "document.txt", content=text).model_dump()

	@app.post("/generate")
	async def generate(request: GenerateRequest):
		generator = app.state.generator
		if generator.busy:
			return JSONResponse(status_code=409, content={"error": "A report is already being generated. Please wait for it to finish."})
		# a new report becomes active, so any chat on the previous one is over
		close_session()
		event_queue = asyncio.Queue()

		def emit(event_type, message=None, stage=None, data=None):
			evt = LogEvent(type=event_type, message=message, stage=stage, data=data)
			event_queue.put_nowait(evt.model_dump())

		async def run():
			try:
				item = await generator.run(
					request.profile,
					request.documents,
					request.include_strategic_perspectives,
					request.web_search,
					emit=emit,
				)
				if item is None:
					emit("error", "Report generation was cancelled.", data={"retryable": True})
				else:
					emit("result", f"✅ Report ready for {item.startup_name}", data=_item_json(item))
			except GenerationError as e:
				emit("error", e.message, data={"kind": type(e).__name__, "detail": e.detail, "retryable": e.retryable})
			except Exception as e:
				logger.exception("Unexpected failure while generating a report for %s", request.profile.startup_name)
				emit("error", "An unexpected error occurred while saving the report. Please try again.", data={"kind": type(e).__name__, "detail": str(e), "retryable": True})
			finally:
				event_queue.put_nowait("__DONE__")

		emit("log", f"🚀 Starting research on {request.profile.startup_name}")
		task = asyncio.create_task(run())

		headers = {
			"Cache-Control": "no-cache",
			"X-Accel-Buffering": "no"
		}
		return StreamingResponse(stream_events(event_queue, task, generator), media_type="text/event-stream", headers=headers)

	@app.delete("/generate")
	async def abandon_generation():
		app.state.generator.abandon()
		return {"status": "abandoned"}

	@app.get("/history")
	async def history(profile: Optional[str] = None):
		items = app.state.store.list_by_profile(profile)
		return {"profile": profile or app.state.store.current_profile, "items": [_item_json(i) for i in items]}

	@app.get("/history/{item_id}")
	async def history_item(item_id: str):
		item = app.state.store.get(item_id)
		if item is None:
			return JSONResponse(status_code=404, content={"error": "Report not found."})
		return _item_json(item)

	@app.get("/profiles")
	async def profiles():
		store = app.state.store
		return {"profiles": store.profiles, "current": store.current_profile}

	@app.post("/profiles")
	async def create_profile(request: ProfileRequest):
		store = app.state.store
		try:
			created = store.create_profile(request.name)
		except ValueError as e:
			return JSONResponse(status_code=400, content={"error": str(e)})
		if created:
			close_session()
		return {"created": created, "profiles": store.profiles, "current": store.current_profile}

	@app.post("/profiles/switch")
	async def switch_profile(request: ProfileRequest):
		store = app.state.store
		try:
			items = store.switch_profile(request.name)
		except ValueError as e:
			return JSONResponse(status_code=400, content={"error": str(e)})
		close_session()
		return {"profiles": store.profiles, "current": store.current_profile, "items": [_item_json(i) for i in items]}

	@app.post("/chat")
	async def open_chat(request: ChatOpenRequest):
		item = app.state.store.get(request.item_id)
		if item is None:
			return JSONResponse(status_code=404, content={"error": "Report not found."})
		close_session()
		app.state.session = EditSession(item, app.state.store, agent=app.state.editing_agent)
		return {"itemId": item.id, "transcript": _transcript_json(app.state.session)}

	@app.get("/chat")
	async def chat_transcript():
		session = app.state.session
		if session is None:
			return JSONResponse(status_code=404, content={"error": "No open edit session."})
		return {"itemId": session.item.id, "responding": session.responding, "transcript": _transcript_json(session)}

	@app.post("/chat/messages")
	async def chat_message(request: ChatMessageRequest):
		session = app.state.session
		if session is None:
			return JSONResponse(status_code=404, content={"error": "No open edit session."})
		try:
			reply = await session.send_message(request.text)
		except SessionBusyError as e:
			return JSONResponse(status_code=409, content={"error": str(e)})
		except SessionClosedError as e:
			return JSONResponse(status_code=410, content={"error": str(e)})
		return {
			"reply": reply.model_dump(by_alias=True, exclude_none=True) if reply else None,
			"transcript": _transcript_json(session),
		}

	@app.post("/chat/apply")
	async def chat_apply(request: ChatApplyRequest):
		session = app.state.session
		if session is None:
			return JSONResponse(status_code=404, content={"error": "No open edit session."})
		try:
			candidate = session.pending_proposal(request.message_index)
			item = session.apply_edit(candidate)
		except (IndexError, ValueError) as e:
			return JSONResponse(status_code=400, content={"error": str(e)})
		except SessionClosedError as e:
			return JSONResponse(status_code=410, content={"error": str(e)})
		return {"item": _item_json(item), "transcript": _transcript_json(session)}

	@app.delete("/chat")
	async def close_chat():
		close_session()
		return {"status": "closed"}

	return app

app = create_app()

if __name__ == "__main__":
	import uvicorn
	uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
