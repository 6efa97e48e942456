import os
import json
import logging
from functools import lru_cache
from typing import List, Dict
from dotenv import load_dotenv
load_dotenv()

from openai import AsyncOpenAI
from anthropic import AsyncAnthropic
from schemas import ResearchProfile, UploadedDocument, AgentReply

logger = logging.getLogger(__name__)

PROVIDER = os.getenv("GOLDSTREAM_PROVIDER", "anthropic").lower()
ANTHROPIC_MODEL = os.getenv("GOLDSTREAM_ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
OPENAI_MODEL = os.getenv("GOLDSTREAM_OPENAI_MODEL", "gpt-4o-mini")
OPENAI_SEARCH_MODEL = os.getenv("GOLDSTREAM_OPENAI_SEARCH_MODEL", "gpt-4o-mini-search-preview")
MAX_TOKENS = int(os.getenv("GOLDSTREAM_MAX_TOKENS", "8192"))
MAX_DOCUMENT_CHARS = 20000

REPORT_SCHEMA = {
	"executiveSummary": "string. 2-3 paragraphs; wrap key phrases in single asterisks for bold, e.g. *key takeaway*",
	"marketAnalysis": {
		"marketSize": "string",
		"keyTrends": ["string"],
		"competitorLandscape": [{"name": "string", "strengths": "string", "weaknesses": "string"}],
	},
	"dataInsights": [{
		"metric": "string",
		"value": "string, display value such as '$25B' or '30%'",
		"numericalValue": "number, chart-ready; 0-100 when visualizationType is GAUGE_CHART or PIE_CHART",
		"commentary": "string",
		"visualizationType": "one of BAR_CHART, PIE_CHART, NUMBER_CARD, GAUGE_CHART, NONE",
	}],
}
PERSPECTIVES_SCHEMA = "string. Actionable recommendations; single asterisks mark bold"

# Lazy so that importing this module never requires API keys
@lru_cache(maxsize=None)
def anthropic_client() -> AsyncAnthropic:
	return AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))

@lru_cache(maxsize=None)
def openai_client() -> AsyncOpenAI:
	return AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))

def build_report_prompt(profile: ResearchProfile, documents: List[UploadedDocument], include_strategic_perspectives: bool) -> str:
	schema = dict(REPORT_SCHEMA)
	if include_strategic_perspectives:
		schema["strategicPerspectives"] = PERSPECTIVES_SCHEMA
	scope = [
		("Target Audience & Customer Segments", profile.target_audience),
		("Unique Value Proposition", profile.value_proposition),
		("Market Dynamics & Trends", profile.market_dynamics),
		("Competitive Intelligence", profile.competitive_landscape),
		("Consumer Behavior", profile.consumer_behavior),
		("Regulatory & Supply Chain", profile.regulatory_risks),
		("Research Objective", profile.objective),
	]
	scope_text = "\n".join(f"{label}: {value.strip()}" for label, value in scope if value and value.strip())
	if documents:
		docs_text = "\n\n".join(
			f"--- Document: {doc.name} ---\n{doc.content[:MAX_DOCUMENT_CHARS]}" for doc in documents
		)
	else:
		docs_text = "No documents provided."
	perspectives_rule = (
		"Include a strategicPerspectives section with concrete recommendations."
		if include_strategic_perspectives
		else "Do NOT include a strategicPerspectives key."
	)
	return f"""
You are a senior desk-research analyst. Produce a market research report for this startup.
Startup:
Name: {profile.startup_name}
Sector: {profile.sector}
Research Scope:
{scope_text or "General market viability assessment."}
Uploaded Documents:
{docs_text}
Rules: quantify wherever possible, produce 4-8 dataInsights, and list 3-5 competitors. {perspectives_rule}
Return ONLY one JSON object matching this schema, with no prose before or after it:
{json.dumps(schema, indent=2)}
"""

def build_chat_system_prompt(report: dict, startup_name: str) -> str:
	return f"""
You are the GDS Assistant, helping a user refine a market research report about {startup_name}.
Current report (JSON):
{json.dumps(report, indent=2)}
If the user asks a question, answer conversationally in plain text without JSON.
If the user asks you to change the report, reply with ONLY the complete updated report as one JSON object
using exactly the same schema (executiveSummary, marketAnalysis, dataInsights and any optional keys already present).
"""

def _anthropic_citations(content) -> List[Dict[str, str]]:
	grounding = []
	for block in content:
		if getattr(block, "type", None) != "text":
			continue
		for citation in getattr(block, "citations", None) or []:
			grounding.append({"uri": getattr(citation, "url", None), "title": getattr(citation, "title", None)})
	return grounding

def _openai_citations(message) -> List[Dict[str, str]]:
	grounding = []
	for annotation in getattr(message, "annotations", None) or []:
		if getattr(annotation, "type", None) == "url_citation":
			grounding.append({"uri": annotation.url_citation.url, "title": annotation.url_citation.title})
	return grounding

async def report_agent(prompt: str, web_search: bool = True) -> AgentReply:
	if PROVIDER == "openai":
		kwargs = {
			"model": OPENAI_SEARCH_MODEL if web_search else OPENAI_MODEL,
			"messages": [{"role": "user", "content": prompt}],
			"max_tokens": MAX_TOKENS,
		}
		if web_search:
			kwargs["web_search_options"] = {}
		else:
			kwargs["response_format"] = {"type": "json_object"}
			kwargs["temperature"] = 0.4
		response = await openai_client().chat.completions.create(**kwargs)
		message = response.choices[0].message
		return AgentReply(text=message.content or "", grounding=_openai_citations(message))
	kwargs = {
		"model": ANTHROPIC_MODEL,
		"max_tokens": MAX_TOKENS,
		"messages": [{"role": "user", "content": prompt}],
	}
	if web_search:
		kwargs["tools"] = [{"type": "web_search_20250305", "name": "web_search", "max_uses": 5}]
	response = await anthropic_client().messages.create(**kwargs)
	# web search splits the answer into several text blocks around citations
	text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
	logger.info("Report generation finished (model=%s, stop_reason=%s)", ANTHROPIC_MODEL, response.stop_reason)
	return AgentReply(text=text, grounding=_anthropic_citations(response.content))

async def chat_agent(system: str, messages: List[Dict[str, str]]) -> str:
	if PROVIDER == "openai":
		response = await openai_client().chat.completions.create(
			model=OPENAI_MODEL,
			messages=[{"role": "system", "content": system}, *messages],
			temperature=0.5,
			max_tokens=MAX_TOKENS
		)
		return response.choices[0].message.content or ""
	response = await anthropic_client().messages.create(
		model=ANTHROPIC_MODEL,
		max_tokens=MAX_TOKENS,
		system=system,
		messages=messages
	)
	return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
