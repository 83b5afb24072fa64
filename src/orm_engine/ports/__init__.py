"""Ports - contracts between the ORM core and the outside world."""
