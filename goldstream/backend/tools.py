import re
import json
from typing import List, Dict, Optional, Tuple, Iterable
from pydantic import BaseModel, ValidationError
from schemas import ResearchReport, Source

REQUIRED_REPORT_KEYS = ("executiveSummary", "marketAnalysis")
EMPHASIS_PATTERN = re.compile(r'(\*[^*\n]+\*)')

def extract_json_object(text: str) -> str:
	"""Return the first balanced {...} object in free-form model text.

	Braces inside double-quoted strings are ignored and a backslash inside a
	string escapes the next character. When no balanced object exists the
	slice between the first '{' and the last '}' is returned, and text with
	neither is returned unchanged.
	"""
	depth = 0
	start = -1
	in_string = False
	escaped = False
	for i, ch in enumerate(text):
		if escaped:
			escaped = False
			continue
		if in_string:
			if ch == '\\':
				escaped = True
			elif ch == '"':
				in_string = False
			continue
		if ch == '"':
			in_string = True
		elif ch == '{':
			if depth == 0:
				start = i
			depth += 1
		elif ch == '}' and depth > 0:
			depth -= 1
			if depth == 0:
				return text[start:i + 1]
	first = text.find('{')
	last = text.rfind('}')
	if first != -1 and last > first:
		return text[first:last + 1]
	return text

def parse_json_object(text: str) -> dict:
	candidate = extract_json_object(text.strip())
	try:
		data = json.loads(candidate)
	except json.JSONDecodeError as e:
		raise ValueError(f"Response is not valid JSON: {e}") from e
	if not isinstance(data, dict):
		raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
	return data

class ReportValidation(BaseModel):
	report: Optional[ResearchReport] = None
	missing: List[str] = []
	error: Optional[str] = None

	@property
	def ok(self) -> bool:
		return self.report is not None

def validate_report(data, require_insights: bool = False) -> ReportValidation:
	"""Decide whether a parsed object is a research report.

	A report needs a non-empty ``executiveSummary`` and a ``marketAnalysis``
	object; generation additionally needs a ``dataInsights`` list.
	"""
	if not isinstance(data, dict):
		return ReportValidation(missing=list(REQUIRED_REPORT_KEYS), error="Response is not a JSON object")
	missing = []
	summary = data.get("executiveSummary")
	if not isinstance(summary, str) or not summary.strip():
		missing.append("executiveSummary")
	if not isinstance(data.get("marketAnalysis"), dict):
		missing.append("marketAnalysis")
	if require_insights and not isinstance(data.get("dataInsights"), list):
		missing.append("dataInsights")
	if missing:
		return ReportValidation(missing=missing, error=f"Missing required fields: {', '.join(missing)}")
	try:
		report = ResearchReport.model_validate(data)
	except ValidationError as e:
		fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
		return ReportValidation(missing=fields, error=f"Invalid report fields: {e.error_count()} error(s) in {', '.join(fields)}")
	return ReportValidation(report=report)

def collect_sources(grounding: Iterable[Dict[str, Optional[str]]]) -> List[Source]:
	# Drop incomplete citations, keep the first entry per uri
	sources = []
	seen = set()
	for entry in grounding or []:
		if not isinstance(entry, dict):
			continue
		uri = str(entry.get("uri") or entry.get("url") or "").strip()
		title = str(entry.get("title") or "").strip()
		if not uri or not title or uri in seen:
			continue
		seen.add(uri)
		sources.append(Source(uri=uri, title=title))
	return sources

def split_emphasis(text: str) -> List[Tuple[str, bool]]:
	"""Split ``*bold*`` markup into (segment, is_bold) pairs for exporters."""
	parts = []
	for part in EMPHASIS_PATTERN.split(text or ""):
		if not part:
			continue
		if len(part) > 2 and part.startswith('*') and part.endswith('*'):
			parts.append((part[1:-1], True))
		else:
			parts.append((part, False))
	return parts
