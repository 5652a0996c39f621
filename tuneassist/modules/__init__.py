"""Core TuneAssist modules (datalog pipeline, simulation, AI analysis, export)"""
