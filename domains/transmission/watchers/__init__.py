"""
Transmission Watchers

Turn raw filesystem notifications into delivery work:
- filesystem.py - watchdog adapter publishing events onto an asyncio queue
- registrar.py - recursive directory registration with cycle protection
- debouncer.py - per-path suppression window for write bursts
- dispatcher.py - classification and bounded-time execution
"""
