# extensions.py
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from services.cache import CacheManager

db = SQLAlchemy()
jwt = JWTManager()
migrate = Migrate()
socketio = SocketIO()
cache = CacheManager()
