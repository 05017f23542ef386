"""Database layer: models, engine and session-level CRUD"""
