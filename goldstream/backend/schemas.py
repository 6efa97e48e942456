from typing import Optional, Dict, List, Literal, Union, Annotated
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

VisualizationType = Literal["BAR_CHART", "PIE_CHART", "NUMBER_CARD", "GAUGE_CHART", "NONE"]

class WireModel(BaseModel):
	# camelCase on the wire, snake_case in Python
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

class ResearchProfile(WireModel):
	startup_name: str
	sector: str
	target_audience: Optional[str] = ""
	value_proposition: Optional[str] = ""
	market_dynamics: Optional[str] = ""
	competitive_landscape: Optional[str] = ""
	consumer_behavior: Optional[str] = ""
	regulatory_risks: Optional[str] = ""
	objective: Optional[str] = ""  # single-objective variant of the form

class UploadedDocument(BaseModel):
	name: str
	content: str

class Insight(WireModel):
	metric: str
	value: str
	numerical_value: float = 0.0  # 0-100 for GAUGE_CHART / PIE_CHART
	commentary: str = ""
	visualization_type: VisualizationType = "NONE"

class Competitor(WireModel):
	name: str
	strengths: str = ""
	weaknesses: str = ""

class MarketAnalysis(WireModel):
	market_size: str = ""
	key_trends: List[str] = []
	competitor_landscape: List[Competitor] = []

class Source(WireModel):
	uri: str
	title: str

class ResearchReport(WireModel):
	executive_summary: str
	market_analysis: MarketAnalysis
	data_insights: List[Insight] = []
	strategic_perspectives: Optional[str] = None
	sources: Optional[List[Source]] = None

class HistoryItem(WireModel):
	id: str  # generation timestamp
	startup_name: str
	date: str
	report: ResearchReport
	profile: str

class ConversationalMessage(BaseModel):
	kind: Literal["conversational"] = "conversational"
	role: Literal["user", "assistant"]
	text: str

class EditProposal(BaseModel):
	kind: Literal["edit_proposal"] = "edit_proposal"
	role: Literal["assistant"] = "assistant"
	text: str
	candidate_report: ResearchReport

ChatMessage = Annotated[Union[ConversationalMessage, EditProposal], Field(discriminator="kind")]

class AgentReply(BaseModel):
	text: str
	grounding: List[Dict[str, Optional[str]]] = []  # raw {uri, title} pairs from the backend

class LogEvent(BaseModel):
	type: str  # "log", "result", "error", "complete"
	message: Optional[str] = None
	stage: Optional[str] = None  # "documents", "web", "insights", "compile"
	data: Optional[Dict] = None

class GenerateRequest(BaseModel):
	profile: ResearchProfile
	documents: List[UploadedDocument] = []
	include_strategic_perspectives: bool = True
	web_search: bool = True

class ProfileRequest(BaseModel):
	name: str

class ChatOpenRequest(BaseModel):
	item_id: str

class ChatMessageRequest(BaseModel):
	text: str

class ChatApplyRequest(BaseModel):
	message_index: int

def report_to_dict(report: ResearchReport) -> dict:
	# optional keys that were never set stay absent
	return report.model_dump(by_alias=True, exclude_none=True)
