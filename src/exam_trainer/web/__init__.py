"""Web API for the exam trainer."""
