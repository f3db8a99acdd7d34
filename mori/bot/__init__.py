"""
Mori — Bot Module

A scriptable client session built on the protocol decoder.

Components:
    callbacks.py   — named-event pub/sub bus (script listeners)
    dispatcher.py  — server event → state change + notifications
    session.py     — Bot: state, actions, movement, dialog slot
    pathfinding.py — A* over world tiles
    config.py      — delays, automation toggles, server target
    scripting.py   — Lua host (lupa) exposing the bot to scripts
    main.py        — replay a capture against a script
"""

from mori.bot.callbacks import CallbackBus, Subscription
from mori.bot.config import Automation, BotConfig, DelayConfig, PrivateServerConfig
from mori.bot.dispatcher import EventDispatcher
from mori.bot.session import ActionStats, Bot
