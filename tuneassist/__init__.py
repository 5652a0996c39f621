"""TuneAssist - AI tuning suggestions for Hondata SManager datalogs"""

__version__ = '0.3.0'
