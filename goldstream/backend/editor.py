"""Chat-driven editing of one history item.

An EditSession is created when the user opens the editor on a report and
discarded when they close it. Replies that parse as a full report become
edit proposals; nothing reaches the history store until apply_edit.
"""
import json
import logging
from typing import List, Dict, Callable, Optional
from schemas import (
	ChatMessage, ConversationalMessage, EditProposal, HistoryItem, ResearchReport, report_to_dict,
)
from agents import chat_agent, build_chat_system_prompt
from tools import parse_json_object, validate_report
from history import HistoryStore

logger = logging.getLogger(__name__)

GREETING = (
	"Hello! I'm the GDS Assistant. Ask me anything about this report, "
	"or tell me what you would like to change and I'll draft the edits for you."
)
EDIT_PROPOSED = "I've made the requested edits. Review the updated report and apply it if it looks right."
EDIT_APPLIED = "Done! The changes have been applied to your report."
APOLOGY = "Sorry, I couldn't get a response. Please check your connection or try again."

class EditorError(Exception):
	pass

class SessionClosedError(EditorError):
	pass

class SessionBusyError(EditorError):
	pass

def classify_reply(text: str) -> ChatMessage:
	try:
		data = parse_json_object(text)
	except ValueError:
		return ConversationalMessage(role="assistant", text=text)
	validation = validate_report(data)
	if not validation.ok:
		return ConversationalMessage(role="assistant", text=text)
	return EditProposal(text=EDIT_PROPOSED, candidate_report=validation.report)

class EditSession:
	def __init__(self, item: HistoryItem, store: HistoryStore, agent: Callable = chat_agent):
		self.item = item
		self.store = store
		self.agent = agent
		self.transcript: List[ChatMessage] = [ConversationalMessage(role="assistant", text=GREETING)]
		self.responding = False
		self.closed = False

	@property
	def report(self) -> ResearchReport:
		return self.item.report

	def close(self):
		self.closed = True
		self.responding = False

	def _backend_messages(self) -> List[Dict[str, str]]:
		# Leading greeting is local only; consecutive same-role turns are merged
		messages = []
		for msg in self.transcript:
			if msg.kind == "edit_proposal":
				content = json.dumps(report_to_dict(msg.candidate_report))
			else:
				content = msg.text
			if not messages and msg.role == "assistant":
				continue
			if messages and messages[-1]["role"] == msg.role:
				messages[-1]["content"] += "\n\n" + content
			else:
				messages.append({"role": msg.role, "content": content})
		return messages

	async def send_message(self, text: str) -> Optional[ChatMessage]:
		if self.closed:
			raise SessionClosedError("The edit session is closed")
		if self.responding:
			raise SessionBusyError("The assistant is still responding")
		if not text or not text.strip():
			return None
		self.transcript.append(ConversationalMessage(role="user", text=text))
		self.responding = True
		system = build_chat_system_prompt(report_to_dict(self.item.report), self.item.startup_name)
		try:
			raw = await self.agent(system, self._backend_messages())
			reply = classify_reply(raw)
		except Exception:
			logger.exception("Chat turn failed for report %s", self.item.id)
			reply = ConversationalMessage(role="assistant", text=APOLOGY)
		finally:
			self.responding = False
		if self.closed:
			logger.info("Dropping reply for closed edit session on %s", self.item.id)
			return None
		self.transcript.append(reply)
		return reply

	def pending_proposal(self, index: int) -> ResearchReport:
		if index < 0 or index >= len(self.transcript):
			raise IndexError(f"No message at index {index}")
		msg = self.transcript[index]
		if msg.kind != "edit_proposal":
			raise ValueError(f"Message {index} does not propose an edit")
		return msg.candidate_report

	def apply_edit(self, candidate: ResearchReport) -> HistoryItem:
		if self.closed:
			raise SessionClosedError("The edit session is closed")
		if self.store.replace_by_id(self.item.id, candidate) is None:
			logger.warning("Report %s is no longer in history, edit kept in session only", self.item.id)
		self.item = self.item.model_copy(update={"report": candidate})
		self.transcript.append(ConversationalMessage(role="assistant", text=EDIT_APPLIED))
		return self.item
