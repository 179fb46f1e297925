"""
TicketScan - Lottery Ticket Number Extraction
==============================================

Extracts rows of lottery numbers (5 regular numbers + 1 special number)
from photographed tickets. Local per-cell OCR is tried first; a cloud
vision model is used as a fallback tier when the local yield is too low.
"""

__version__ = "1.0.0"
