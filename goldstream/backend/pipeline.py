import time
import logging
from typing import List, Callable, Optional
from schemas import ResearchProfile, UploadedDocument, ResearchReport, HistoryItem
from agents import report_agent, build_report_prompt
from tools import parse_json_object, validate_report, collect_sources
from history import HistoryStore, make_history_item

logger = logging.getLogger(__name__)

class GenerationError(Exception):
	"""Base class for failed report generation attempts."""
	retryable = True
	message = "Report generation failed. Please try again."

	def __init__(self, detail: Optional[str] = None):
		self.detail = detail
		super().__init__(self.message)

class CommunicationError(GenerationError):
	message = "Could not communicate with the AI service. Please check your connection and try again."

class MalformedResponseError(GenerationError):
	message = "The AI returned a response that could not be read as a report. Please try again."

class InvalidJSONError(MalformedResponseError):
	message = "The AI returned an invalid format. Please try generating the report again."

class MissingFieldsError(MalformedResponseError):
	message = "The AI response was missing required report sections. Please try generating the report again."

	def __init__(self, detail: Optional[str] = None, missing: Optional[List[str]] = None):
		super().__init__(detail)
		self.missing = missing or []

def _noop(*args, **kwargs):
	pass

async def generate_report(
	profile: ResearchProfile,
	documents: Optional[List[UploadedDocument]] = None,
	include_strategic_perspectives: bool = True,
	web_search: bool = True,
	agent: Callable = report_agent,
	emit: Optional[Callable] = None,
) -> ResearchReport:
	"""Run one generation call and turn the reply into a validated report.

	Raises CommunicationError when the backend call fails, InvalidJSONError
	when no JSON object can be read from the reply and MissingFieldsError
	when the object is not report-shaped. Nothing is persisted here.
	"""
	emit = emit or _noop
	documents = documents or []
	if documents:
		emit("log", f"📄 Analyzing {len(documents)} document(s)...", "documents")
	prompt = build_report_prompt(profile, documents, include_strategic_perspectives)
	emit("log", "🌐 Scouting web data..." if web_search else "🧠 Consulting the model...", "web")
	try:
		reply = await agent(prompt, web_search)
	except Exception as e:
		logger.warning("Generation call failed for %s: %s", profile.startup_name, e)
		raise CommunicationError(str(e)) from e
	emit("log", "📊 Visualizing insights...", "insights")
	try:
		data = parse_json_object(reply.text)
	except ValueError as e:
		logger.warning("Unparseable generation reply for %s: %s", profile.startup_name, e)
		raise InvalidJSONError(str(e)) from e
	if not include_strategic_perspectives:
		data.pop("strategicPerspectives", None)
		data.pop("strategic_perspectives", None)
	# citations the model wrote itself are cleaned like backend grounding
	written_sources = data.pop("sources", None)
	if not isinstance(written_sources, list):
		written_sources = []
	validation = validate_report(data, require_insights=True)
	if not validation.ok:
		logger.warning("Generation reply for %s is not a report: %s", profile.startup_name, validation.error)
		raise MissingFieldsError(validation.error, missing=validation.missing)
	report = validation.report
	emit("log", "🧾 Compiling report...", "compile")
	sources = collect_sources(reply.grounding) or collect_sources(written_sources)
	return report.model_copy(update={"sources": sources or None})

class ReportGenerator:
	"""Serialises generation for one caller and files results into history.

	``busy`` is informational; callers are expected not to start a second
	run while one is pending. ``abandon`` makes the pending run's result
	stale so it is dropped instead of appended.
	"""

	def __init__(self, store: HistoryStore, agent: Callable = report_agent):
		self.store = store
		self.agent = agent
		self.busy = False
		self._ticket = 0

	def abandon(self):
		self._ticket += 1
		self.busy = False

	async def run(
		self,
		profile: ResearchProfile,
		documents: Optional[List[UploadedDocument]] = None,
		include_strategic_perspectives: bool = True,
		web_search: bool = True,
		emit: Optional[Callable] = None,
	) -> Optional[HistoryItem]:
		self._ticket += 1
		ticket = self._ticket
		self.busy = True
		start_time = time.time()
		try:
			report = await generate_report(
				profile, documents, include_strategic_perspectives, web_search, agent=self.agent, emit=emit
			)
		except GenerationError:
			if ticket != self._ticket:
				logger.info("Dropping failure of abandoned generation for %s", profile.startup_name)
				return None
			raise
		finally:
			if ticket == self._ticket:
				self.busy = False
		if ticket != self._ticket:
			logger.info("Dropping stale report for %s", profile.startup_name)
			return None
		item = make_history_item(profile.startup_name, report, self.store.current_profile)
		self.store.append(item)
		logger.info("Generated report %s for %s in %.1fs", item.id, profile.startup_name, time.time() - start_time)
		return item
