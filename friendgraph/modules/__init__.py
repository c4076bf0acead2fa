"""
Modules package initialization.
This package contains all the functional modules of the application.
"""

from friendgraph.modules import friendships
from friendgraph.modules import notifications
from friendgraph.modules import realtime
