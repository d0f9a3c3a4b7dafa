"""Pull a JSON value out of free-form model replies."""

import json
import re
from typing import Any, Iterator, Optional

_FENCE = re.compile(r"```[A-Za-z]*[ \t]*\n?(.*?)```", re.DOTALL)
_decoder = json.JSONDecoder()


def _candidates(text: str) -> Iterator[str]:
	"""Fenced block bodies in order, then the reply with its fence markers dropped."""
	for body in _FENCE.findall(text):
		yield body.strip()
	yield _FENCE.sub(lambda m: m.group(1), text).strip()


def first_json_object(text: str) -> Optional[dict]:
	"""Decode the first {...} value that parses, scanning brace by brace."""
	start = text.find("{")
	while start != -1:
		try:
			value, _ = _decoder.raw_decode(text, start)
		except ValueError:
			start = text.find("{", start + 1)
			continue
		return value
	return None


def extract_json_from_text(text: str) -> Optional[Any]:
	"""
	Find the JSON a model reply carries.

	A candidate (fenced body or the whole reply) that is entirely JSON wins,
	whatever its type. Failing that, the first object embedded in the
	prose of any candidate is returned. None if nothing decodes.
	"""
	if not text or not text.strip():
		return None

	candidates = list(_candidates(text))
	for candidate in candidates:
		try:
			return json.loads(candidate)
		except ValueError:
			pass

	for candidate in candidates:
		found = first_json_object(candidate)
		if found is not None:
			return found
	return None
