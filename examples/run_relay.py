"""Run the relay server programmatically with the example function map.

Usage:
    export DEEPGRAM_API_KEY=... NGROK_URL=https://<your-tunnel>
    python examples/run_relay.py
"""

from functions import FUNCTION_MAP

from voicerelay.server import run_server

if __name__ == "__main__":
    run_server(
        {"listen_port": 8881, "agent_settings": "examples/config.json"},
        functions=FUNCTION_MAP,
    )
