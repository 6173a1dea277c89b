"""Service layer: Gemini client, project persistence and the conform workflow."""
