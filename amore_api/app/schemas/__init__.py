"""
Pydantic schemas shared by the services, the bot and the admin API.
"""
