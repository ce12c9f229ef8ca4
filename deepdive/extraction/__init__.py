"""Extraction module"""
from .extractor import InsightExtractor, ExtractionOutcome, ProcessedResult, Feedback

__all__ = ["InsightExtractor", "ExtractionOutcome", "ProcessedResult", "Feedback"]
