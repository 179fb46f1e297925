"""
Cloud Vision Client for Lottery Ticket Extraction
=================================================

Sends a ticket image plus an extraction prompt to a chat-completions style
vision endpoint and turns the JSON it returns into ticket rows.

The model does not always answer in the same shape, so the response parser
accepts, in order: a bare array of rows, an object with a ``rows`` array, and
a single row object. Everything downstream only ever sees TicketRow lists.
"""

import base64
import json
import re
from typing import Any, Callable, Dict, List, Optional, Union

import requests
from PIL import Image
from loguru import logger

from ticketscan.config import ScanSettings, get_api_key
from ticketscan.connectivity import ConnectivityChecker, create_connectivity_checker
from ticketscan.errors import NetworkError, ParseError, RefusalError
from ticketscan.image_preprocessor import prepare_for_upload
from ticketscan.models import REGULAR_COUNT, UNREADABLE, TicketRow

CODE_FENCE = re.compile(r"```[a-zA-Z]*\s*([\s\S]*?)\s*```")

NUMBER_KEYS = ("numbers", "regular_numbers")
SPECIAL_KEYS = ("special", "special_number")
MAX_TICKET_VALUE = 99

EXTRACTION_PROMPT = """
Read the lottery ticket in this image and extract every play printed on it.

Each play has 5 regular numbers followed by 1 special number (Powerball,
Mega Ball, bonus ball, etc). Some games have no special number; use 0 for it.

Return ONLY a JSON object with this structure:
{
  "rows": [
    {"numbers": [4, 8, 15, 16, 23], "special": 42}
  ]
}

IMPORTANT:
- Return ONLY the JSON object, no other text
- Keep the plays in the order they appear on the ticket, top to bottom
- Keep the numbers of each play in the order they are printed
- Use -1 for any number you can see but cannot read with confidence
- Do not guess numbers that are not on the ticket
"""

ROW_COUNT_PROMPT = """
How many lottery plays (rows of numbers) are printed on this ticket?
Answer with a single integer and nothing else.
"""

ConnectivityCheck = Union[ConnectivityChecker, Callable[[], bool]]


def build_extraction_prompt(expected_row_count: Optional[int] = None) -> str:
    """Extraction instruction, demanding an exact row count when one is known."""
    prompt = EXTRACTION_PROMPT.strip()
    if expected_row_count is not None:
        prompt += (
            f"\n- The ticket has exactly {expected_row_count} plays: return exactly "
            f"{expected_row_count} rows, using -1 for any entry you cannot read"
        )
    return prompt


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = CODE_FENCE.search(text)
    return match.group(1).strip() if match else text.strip()


def coerce_value(value: Any) -> int:
    """
    Permissively coerce one entry to a ticket value.

    JSON numbers and numeric strings are accepted; anything unparseable or
    outside ``-1..99`` becomes the unreadable sentinel.
    """
    if isinstance(value, bool):
        return UNREADABLE
    if isinstance(value, (int, float)):
        number = int(value) if float(value).is_integer() else None
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            number = None
    else:
        number = None

    if number is None or not UNREADABLE <= number <= MAX_TICKET_VALUE:
        return UNREADABLE
    return number


def _first_present(data: Dict, keys) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def row_from_dict(data: Dict) -> TicketRow:
    """Normalize one row object; short number lists are padded with -1."""
    raw_numbers = _first_present(data, NUMBER_KEYS)
    if not isinstance(raw_numbers, list):
        raw_numbers = []
    numbers = [coerce_value(v) for v in raw_numbers[:REGULAR_COUNT]]
    numbers += [UNREADABLE] * (REGULAR_COUNT - len(numbers))

    raw_special = _first_present(data, SPECIAL_KEYS)
    special = UNREADABLE if raw_special is None else coerce_value(raw_special)
    return TicketRow(numbers=tuple(numbers), special=special)


def _is_row_object(data: Any) -> bool:
    return isinstance(data, dict) and any(key in data for key in NUMBER_KEYS)


def parse_rows_response(content: str) -> List[TicketRow]:
    """
    Decode the model's message content into ticket rows.

    Args:
        content: Raw message content, possibly wrapped in a code fence

    Returns:
        Rows in the order the model listed them

    Raises:
        ParseError: If the content is not JSON or matches none of the row shapes
    """
    text = strip_code_fences(content)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Cloud response is not valid JSON: {e}")
        raise ParseError(f"Cloud response is not valid JSON: {e}") from e

    if isinstance(data, list):
        items = data
    elif isinstance(data, dict) and isinstance(data.get("rows"), list):
        items = data["rows"]
    elif _is_row_object(data):
        items = [data]
    else:
        raise ParseError("Cloud response matches no known row shape")

    rows = [row_from_dict(item) for item in items if isinstance(item, dict)]
    if len(rows) != len(items):
        logger.warning(f"Skipped {len(items) - len(rows)} non-object row(s) in cloud response")
    return rows


def parse_row_count(content: str) -> int:
    """Trim and convert the row-count answer; anything else is a ParseError."""
    text = strip_code_fences(content)
    try:
        count = int(text)
    except ValueError as e:
        raise ParseError(f"Row count answer is not an integer: '{text}'") from e
    if count < 0:
        raise ParseError(f"Row count answer is negative: {count}")
    return count


class CloudVisionClient:
    """
    Client for the cloud vision extraction tiers.

    Every call checks connectivity first and shrinks the image to the upload
    budget before sending. Calls are never retried here; the orchestrator
    decides what happens after a failure.
    """

    def __init__(self, api_key: str, settings: Optional[ScanSettings] = None,
                 connectivity: Optional[ConnectivityCheck] = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            api_key: Bearer token for the vision endpoint
            settings: Model, endpoint, timeout and upload limits
            connectivity: Reachability check queried before each call
            session: HTTP session; a new requests.Session when omitted
        """
        self.api_key = api_key
        self.settings = settings or ScanSettings()
        self.connectivity = connectivity or create_connectivity_checker(self.settings)
        self.session = session or requests.Session()

        logger.info(f"Cloud vision client initialized ({self.settings.cloud_model})")

    def encode_image(self, image: Image.Image) -> str:
        """Resize/re-encode the image within the upload budget and return base64."""
        payload = prepare_for_upload(image, self.settings)
        logger.debug(f"Upload payload: {len(payload) / 1024:.1f} KB")
        return base64.b64encode(payload).decode("utf-8")

    def _build_body(self, prompt: str, image_b64: str, max_tokens: int, json_mode: bool) -> Dict[str, Any]:
        body = {
            "model": self.settings.cloud_model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
                    ],
                }
            ],
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    def _complete(self, prompt: str, image: Image.Image, max_tokens: int, json_mode: bool = True) -> str:
        """
        Run one chat-completions request and return the message content.

        Raises:
            NetworkError: No connectivity, transport failure or non-2xx status
            RefusalError: The model refused to process the image
            ParseError: The response envelope is malformed
        """
        if not self.connectivity():
            raise NetworkError("No network connectivity, cloud request not sent")

        body = self._build_body(prompt, self.encode_image(image), max_tokens, json_mode)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        url = self.settings.cloud_completions_url
        logger.debug(f"Sending request to {url}")
        try:
            response = self.session.post(url, headers=headers, json=body,
                                         timeout=self.settings.cloud_timeout_seconds)
        except requests.exceptions.Timeout as e:
            logger.error(f"Cloud request timed out after {self.settings.cloud_timeout_seconds}s")
            raise NetworkError("Cloud request timed out") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Cloud connection error: {e}")
            raise NetworkError(f"Cloud connection error: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Cloud request failed: {e}")
            raise NetworkError(f"Cloud request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Cloud service returned HTTP {response.status_code}")
            raise NetworkError(f"Cloud service returned HTTP {response.status_code}")

        try:
            message = response.json()["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParseError("Cloud response envelope is malformed") from e

        if not isinstance(message, dict):
            raise ParseError("Cloud response message is not an object")

        refusal = message.get("refusal")
        if refusal:
            logger.warning(f"Cloud service refused the image: {refusal}")
            raise RefusalError(str(refusal))

        content = message.get("content")
        if not content:
            raise ParseError("Cloud response has no content")
        if not isinstance(content, str):
            raise ParseError(f"Cloud response content is {type(content).__name__}, expected text")

        logger.debug(f"Raw cloud response: {content}")
        return content

    def extract(self, image: Image.Image, expected_row_count: Optional[int] = None) -> List[TicketRow]:
        """
        Extract ticket rows from an image.

        Args:
            image: Ticket image at full resolution
            expected_row_count: Exact number of rows to demand, if known

        Returns:
            List of TicketRow

        Raises:
            NetworkError, RefusalError, ParseError
        """
        prompt = build_extraction_prompt(expected_row_count)
        content = self._complete(prompt, image, self.settings.cloud_max_tokens)
        rows = parse_rows_response(content)
        logger.info(f"Cloud extraction returned {len(rows)} row(s)"
                    + (f" (hint: {expected_row_count})" if expected_row_count is not None else ""))
        return rows

    def detect_row_count(self, image: Image.Image) -> int:
        """
        Ask the service only for the number of plays on the ticket.

        Raises:
            NetworkError, RefusalError, ParseError
        """
        content = self._complete(ROW_COUNT_PROMPT.strip(), image,
                                 self.settings.row_count_max_tokens, json_mode=False)
        count = parse_row_count(content)
        logger.info(f"Cloud row count: {count}")
        return count


def create_cloud_vision_client(settings: Optional[ScanSettings] = None) -> CloudVisionClient:
    """
    Create a cloud vision client with the API key from the environment.

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set
    """
    settings = settings or ScanSettings()
    return CloudVisionClient(api_key=get_api_key(), settings=settings)
