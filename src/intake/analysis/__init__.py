"""intake analysis: candidate retrieval, chunk classification, document pipeline."""

from intake.analysis.candidates import Candidate, CandidateRetriever
from intake.analysis.mapping import (
    ClassificationRequest,
    DocumentType,
    LLMClassifier,
    MappingAction,
    MappingEngine,
    MappingResult,
    RiskLevel,
    detect_document_type,
)
from intake.analysis.pipeline import (
    AnalysisChunk,
    AnalysisResult,
    AnalysisSummary,
    DocumentAnalyzer,
    analyze_document,
)

__all__ = [
    "AnalysisChunk",
    "AnalysisResult",
    "AnalysisSummary",
    "Candidate",
    "CandidateRetriever",
    "ClassificationRequest",
    "DocumentAnalyzer",
    "DocumentType",
    "LLMClassifier",
    "MappingAction",
    "MappingEngine",
    "MappingResult",
    "RiskLevel",
    "analyze_document",
    "detect_document_type",
]
