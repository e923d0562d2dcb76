from flask import Flask, render_template, request, jsonify
from flask_socketio import SocketIO
import time
import logging
import socket
import sys
import os
from datetime import datetime
from functools import lru_cache

import psutil
import requests

from game import settings
from game.world import World
from game.session import SessionManager

app = Flask(__name__)
app.config['SECRET_KEY'] = settings.SECRET_KEY

# Setup logging with timestamp in logs folder
timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
logs_folder = "logs"
os.makedirs(logs_folder, exist_ok=True)
log_filename = os.path.join(logs_folder, f"mmo_maze_server_{timestamp}.log")

# Detailed logs go to the file, console only shows warnings and errors
file_handler = logging.FileHandler(log_filename)
file_handler.setLevel(logging.DEBUG)
file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.WARNING)
console_handler.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))

logging.basicConfig(
    level=logging.DEBUG,
    handlers=[file_handler, console_handler]
)

# Suppress SocketIO console logging completely
logging.getLogger('socketio').setLevel(logging.ERROR)
logging.getLogger('engineio').setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

# Important server messages still reach the console
server_console = logging.StreamHandler(sys.stdout)
server_console.setLevel(logging.INFO)
server_console.setFormatter(logging.Formatter('[SERVER] %(message)s'))
logger.addHandler(server_console)
logger.setLevel(logging.DEBUG)

# async_handlers=False: events from one client are handled in arrival order
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading', async_handlers=False,
                    logger=False, engineio_logger=False)


def send_state(sid, payload):
    socketio.emit('state', payload, to=sid)


def send_welcome(sid, session):
    socketio.emit('welcome', {
        'player_id': session.player_id,
        'grid_size': world.grid_size,
        'cell_size': world.cell_size,
        'player_size': world.player_size
    }, to=sid)


# Global game world and the sessions attached to it
world = World()
sessions = SessionManager(world, send_state, greet=send_welcome)


# Performance monitoring
class PerformanceMonitor:
    def __init__(self):
        self.message_times = []
        self.cpu_percentages = []
        self.memory_usage = []
        self.player_counts = []
        self.last_log_time = time.time()
        self.message_count = 0

    def record_message_time(self, message_time):
        self.message_times.append(message_time)
        self.message_count += 1

        # Keep only last 100 measurements
        if len(self.message_times) > 100:
            self.message_times.pop(0)

    def record_system_stats(self, player_count):
        self.cpu_percentages.append(psutil.cpu_percent())
        self.memory_usage.append(psutil.Process().memory_info().rss / 1024 / 1024)  # MB
        self.player_counts.append(player_count)

        # Keep only last 60 measurements
        if len(self.cpu_percentages) > 60:
            self.cpu_percentages.pop(0)
            self.memory_usage.pop(0)
            self.player_counts.pop(0)

    def get_stats(self):
        if not self.message_times:
            return {}

        avg_message_time = sum(self.message_times) / len(self.message_times)
        max_message_time = max(self.message_times)

        return {
            'avg_message_time': round(avg_message_time * 1000, 2),  # ms
            'max_message_time': round(max_message_time * 1000, 2),  # ms
            'cpu_percent': round(sum(self.cpu_percentages) / len(self.cpu_percentages), 1) if self.cpu_percentages else 0,
            'memory_mb': round(sum(self.memory_usage) / len(self.memory_usage), 1) if self.memory_usage else 0,
            'player_count': self.player_counts[-1] if self.player_counts else 0,
            'total_messages': self.message_count
        }

    def should_log(self):
        return time.time() - self.last_log_time >= 5.0  # Log every 5 seconds

    def log_performance(self):
        stats = self.get_stats()
        if not stats:
            return
        logger.info(f"[PERFORMANCE] Message Time: {stats['avg_message_time']}ms (max: {stats['max_message_time']}ms), "
                    f"CPU: {stats['cpu_percent']}%, Memory: {stats['memory_mb']}MB, "
                    f"Players: {stats['player_count']}")
        self.last_log_time = time.time()


perf_monitor = PerformanceMonitor()


@lru_cache(maxsize=1)
def get_server_ip():
    """Public IP if reachable, otherwise the LAN address, otherwise localhost"""
    try:
        response = requests.get('https://api.ipify.org', timeout=5)
        response.raise_for_status()
        return response.text.strip()
    except requests.RequestException as e:
        logger.debug(f"Public IP lookup failed: {e}")

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(('8.8.8.8', 80))
            return s.getsockname()[0]
    except OSError:
        return 'localhost'


@app.route('/')
def index():
    return render_template('index.html', server_ip=get_server_ip(), server_port=settings.PORT,
                           cell_size=world.cell_size, player_size=world.player_size)


@app.route('/stats')
def stats():
    state = world.snapshot()
    return jsonify({
        'performance': perf_monitor.get_stats(),
        'players': len(state.players),
        'sessions': len(sessions),
        'generation': state.generation,
        'tick': state.tick,
        'broadcast_failures': sessions.broadcaster.failed
    })


@socketio.on('connect')
def on_connect(*args):
    logger.info(f'Client {request.sid} connected')
    sessions.on_connect(request.sid)


@socketio.on('disconnect')
def on_disconnect(*args):
    logger.info(f'[DISCONNECT] Client {request.sid} disconnected')
    sessions.on_disconnect(request.sid)


def handle_intent(data):
    start = time.time()
    sessions.on_message(request.sid, data)
    perf_monitor.record_message_time(time.time() - start)

    # Record system stats less frequently (every 10 messages)
    if perf_monitor.message_count % 10 == 0:
        perf_monitor.record_system_stats(len(sessions))

    if perf_monitor.should_log():
        perf_monitor.log_performance()


@socketio.on('move')
def on_move(data=None):
    handle_intent(data)


@socketio.on('message')
def on_raw_message(data=None):
    # Plain send() from a client: a JSON string with either intent variant
    handle_intent(data)


if __name__ == '__main__':
    print(f"[STARTUP] Server logs: {log_filename}")
    print(f"[STARTUP] Navigate to http://localhost:{settings.PORT} to play")

    # No reloader: it would spawn a second process with its own world
    socketio.run(app, host=settings.HOST, port=settings.PORT, debug=False, use_reloader=False,
                 allow_unsafe_werkzeug=True)
