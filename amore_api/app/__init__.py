"""
Application package initializer.

The project is organised into logical pieces: ``core`` holds settings,
the SQLite connection and logging, ``schemas`` the pydantic models,
``services`` the roster and like/match logic, and ``api`` the admin HTTP
surface built in ``main``.  The Telegram bot in
``telegram_amore_bot.py`` calls the services directly.
"""
