# Import all models here so Alembic can detect them
from friendgraph.db.session import Base

# Import all models below
from friendgraph.modules.friendships.models.friendship import Friendship, FriendRequest
from friendgraph.modules.notifications.models.notification import Notification
