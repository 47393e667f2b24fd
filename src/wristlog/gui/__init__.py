"""Qt integration for WristLog.

Only a signal bridge lives here; screens are provided by the host
application, which connects to :class:`~wristlog.gui.session_bridge.SessionBridge`.
"""
