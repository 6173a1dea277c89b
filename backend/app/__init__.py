"""
Addenda Conform service.

FastAPI backend for conforming construction documents with their addenda:
- Gemini-generated change instructions from uploaded addenda
- Page location, review and approval of every change
- Annotated page previews, word and pixel diffs
- Conformed PDF export and change reports
- SQLite/PostgreSQL persistence of projects and their files
"""

__version__ = "1.0.0"
