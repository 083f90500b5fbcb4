from app.features.analysis.models.analysis_record import AnalysisRecord

__all__ = ["AnalysisRecord"]
