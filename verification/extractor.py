import asyncio
import base64
import io
import json
import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Any, Optional

import cv2
import numpy as np
import pytesseract
from PIL import Image

from config import settings
from .checks import DocumentChecks
from .decorators import log_call
from .file_converter import load_image
from .models import OCRResult

logger = logging.getLogger(__name__)


def preprocess_for_ocr(data: bytes, max_dimension: int = None) -> bytes:
    """
    Greyscale, downscale so the longest side fits max_dimension (never enlarge),
    stretch contrast to the full 0-255 range and re-encode as lossless PNG.
    Raises ImageDecodeError for undecodable buffers.
    """
    max_dimension = settings.OCR_MAX_DIMENSION if max_dimension is None else max_dimension
    img = load_image(data).convert("L")

    w, h = img.size
    scale = min(1.0, max_dimension / float(max(w, h)))
    if scale < 1.0:
        img = img.resize((max(1, round(w * scale)), max(1, round(h * scale))), Image.Resampling.LANCZOS)

    gray = np.array(img, dtype=np.uint8)
    gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)

    ok, buf = cv2.imencode(".png", gray)
    if not ok:
        raise ValueError("PNG encoding failed")
    return buf.tobytes()


class OCREngine(ABC):
    """Text recognition over a preprocessed PNG"""

    name = "base"

    @abstractmethod
    def recognize(self, png: bytes, timeout: float) -> str:
        ...


class NullEngine(OCREngine):
    """Used when no OCR engine is available; downstream validation is skipped"""

    name = "none"

    def recognize(self, png: bytes, timeout: float) -> str:
        return ""


class TesseractEngine(OCREngine):
    """Tesseract via pytesseract; the timeout kills the tesseract process"""

    name = "tesseract"

    def __init__(self, languages: str = None, config: str = "--psm 3"):
        self.languages = languages or settings.OCR_LANGUAGES
        self.config = config

    def recognize(self, png: bytes, timeout: float) -> str:
        image = Image.open(io.BytesIO(png))
        text = pytesseract.image_to_string(
            image, lang=self.languages, config=self.config, timeout=timeout
        )
        return text.strip()


class VisionLLMEngine(OCREngine):
    """
    Transcribes document text using an OpenAI vision model.
    Only the verbatim text is requested; field extraction stays local.
    """

    name = "openai"

    PROMPT = """
You are an OCR system for identity documents.

Transcribe ALL printed text in this image exactly as it appears.
Keep the original line breaks. Do not translate, correct or summarise.
If no text is readable, return an empty string.

Return STRICT JSON only.

Expected format:
{
  "text": "string"
}
"""

    def __init__(self, client=None, model: str = None):
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client
        self.model = model or settings.OPENAI_MODEL

    def encode_image(self, png: bytes) -> str:
        """Encode image as base64 data URL"""
        return f"data:image/png;base64,{base64.b64encode(png).decode('utf-8')}"

    def safe_json_parse(self, text: str) -> Dict[str, Any]:
        """Safely parse JSON from LLM response"""
        match = re.search(r"\{.*\}", text or "", re.DOTALL)
        if not match:
            raise ValueError("No JSON found in model output")
        return json.loads(match.group())

    def recognize(self, png: bytes, timeout: float) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self.PROMPT},
                        {"type": "image_url", "image_url": {"url": self.encode_image(png)}}
                    ]
                }
            ],
            max_tokens=1200,
            temperature=0,
            timeout=timeout
        )
        parsed = self.safe_json_parse(response.choices[0].message.content)
        return str(parsed.get("text") or "").strip()


def build_ocr_engine(engine: str = None) -> OCREngine:
    """Select the OCR engine once at startup"""
    engine = (engine or settings.OCR_ENGINE).lower()

    if engine == "none":
        return NullEngine()

    if engine == "tesseract":
        try:
            pytesseract.get_tesseract_version()
            return TesseractEngine()
        except OSError as e:
            logger.warning(f"Tesseract not available - OCR disabled ({e})")
            return NullEngine()

    if engine == "openai":
        if not settings.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not set - OCR disabled")
            return NullEngine()
        return VisionLLMEngine()

    raise ValueError(f"Unknown OCR engine: {engine}")


class DocumentOCR:
    """
    Runs preprocessing + recognition and parses candidate fields.
    Engine failures and timeouts degrade to an empty result; an undecodable
    document raises ImageDecodeError whichever engine is configured.
    """

    def __init__(self, engine: Optional[OCREngine] = None, checks: Optional[DocumentChecks] = None,
                 max_dimension: int = None, timeout: float = None):
        self.engine = engine if engine is not None else build_ocr_engine()
        self.checks = checks or DocumentChecks()
        self.max_dimension = settings.OCR_MAX_DIMENSION if max_dimension is None else max_dimension
        self.timeout = settings.OCR_TIMEOUT_SECONDS if timeout is None else timeout

    @property
    def available(self) -> bool:
        return not isinstance(self.engine, NullEngine)

    def _recognize(self, png: bytes, timeout: float) -> str:
        try:
            return self.engine.recognize(png, timeout)
        except Exception as e:
            logger.warning(f"OCR failed ({self.engine.name}), continuing without text: {e}")
            return ""

    def read_text(self, data: bytes, timeout: float) -> str:
        """Preprocess and recognise; decode errors propagate"""
        png = preprocess_for_ocr(data, self.max_dimension)
        return self._recognize(png, timeout)

    def extract(self, data: bytes, timeout: float = None) -> OCRResult:
        """Blocking extraction; the engine enforces its own timeout"""
        if not self.available:
            load_image(data)
            return OCRResult()
        text = self.read_text(data, self.timeout if timeout is None else timeout)
        return self.checks.parse(text)

    @log_call("ocr")
    async def extract_with_deadline(self, data: bytes, timeout: float = None) -> OCRResult:
        """
        Race preprocessing + recognition against a deadline; on timeout return
        an empty result without waiting for the worker.
        """
        if not self.available:
            await asyncio.to_thread(load_image, data)
            logger.warning("OCR not available, skipping document validation")
            return OCRResult()

        timeout = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        # Not the loop's default executor: asyncio.run joins that one on exit
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr")
        try:
            text = await asyncio.wait_for(
                loop.run_in_executor(executor, self.read_text, data, timeout), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"OCR timeout after {timeout}s, skipping")
            return OCRResult()
        finally:
            executor.shutdown(wait=False)

        result = self.checks.parse(text)
        logger.info(f"OCR completed ({self.engine.name}), extracted {len(result.raw_text)} characters")
        return result
