#!/usr/bin/env python3

import requests
import json
import argparse
from urllib.parse import quote


class HLSProxyClient:
    def __init__(self, base_url="http://localhost:8085", api_token=None):
        self.base_url = base_url.rstrip("/")
        self.headers = {"X-API-Token": api_token} if api_token else {}

    def _get(self, path, **params):
        response = requests.get(f"{self.base_url}{path}", params=params or None, headers=self.headers)
        return response.json()

    def _post(self, path, data=None):
        response = requests.post(f"{self.base_url}{path}", json=data, headers=self.headers)
        return response.json()

    def list_endpoints(self):
        return self._get("/api/proxy/endpoints")

    def find_proxy(self, channel, max_attempts=None, preferred="auto"):
        params = {"channel": channel, "preferred": preferred}
        if max_attempts:
            params["max_attempts"] = max_attempts
        return self._get("/api/proxy/failover", **params)

    def inspect(self, src):
        return self._get("/api/hls/inspect", src=src)

    def start_session(self, channel, preferred="auto"):
        return self._post("/api/sessions", {"channel": channel, "preferred_proxy": preferred})

    def report_failure(self, session_id):
        return self._post(f"/api/sessions/{quote(session_id)}/failure")

    def end_session(self, session_id):
        response = requests.delete(f"{self.base_url}/api/sessions/{quote(session_id)}", headers=self.headers)
        return response.json()

    def get_health(self):
        return self._get("/health")

    def print_failover(self, result):
        """Print formatted failover attempts"""
        print("=" * 60)
        print("RELAY FAILOVER")
        print("=" * 60)
        for attempt in result.get("attempts", []):
            mark = "✓" if attempt["success"] else "✗"
            detail = "" if attempt["success"] else f" - {attempt['error']}"
            print(f"{mark} {attempt['endpoint']} ({attempt['region']}) "
                  f"{attempt['response_time_ms']}ms{detail}")
        print()
        if result.get("success"):
            print(f"Selected: {result['endpoint']['name']}")
            print(f"Stream URL: {result['stream_url']}")
        else:
            print(f"Failed: {result.get('error')}")


def main():
    parser = argparse.ArgumentParser(description="hls-failover-proxy Client")
    parser.add_argument("--base-url", default="http://localhost:8085",
                        help="Base URL of the proxy server")
    parser.add_argument("--token", help="API token for management routes")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("endpoints", help="List relay endpoints")

    failover_parser = subparsers.add_parser("failover", help="Find a working relay")
    failover_parser.add_argument("channel", help="Channel name")
    failover_parser.add_argument("--max-attempts", type=int, help="Relays to try")
    failover_parser.add_argument("--preferred", default="auto", help="Relay to try first")

    inspect_parser = subparsers.add_parser("inspect", help="Inspect cues in a playlist")
    inspect_parser.add_argument("src", help="Absolute playlist URL")

    start_parser = subparsers.add_parser("session-start", help="Start a player session")
    start_parser.add_argument("channel", help="Channel name")
    start_parser.add_argument("--preferred", default="auto", help="Relay to try first")

    failure_parser = subparsers.add_parser("session-failure", help="Report a playback failure")
    failure_parser.add_argument("session_id", help="Session ID")

    end_parser = subparsers.add_parser("session-end", help="End a player session")
    end_parser.add_argument("session_id", help="Session ID")

    subparsers.add_parser("health", help="Check health")

    args = parser.parse_args()

    client = HLSProxyClient(args.base_url, args.token)

    try:
        if args.command == "endpoints":
            for endpoint in client.list_endpoints()["endpoints"]:
                print(f"{endpoint['priority']}. {endpoint['name']} ({endpoint['region']}) {endpoint['base_url']}")

        elif args.command == "failover":
            client.print_failover(client.find_proxy(args.channel, args.max_attempts, args.preferred))

        elif args.command == "inspect":
            print(json.dumps(client.inspect(args.src), indent=2))

        elif args.command == "session-start":
            print(json.dumps(client.start_session(args.channel, args.preferred), indent=2))

        elif args.command == "session-failure":
            print(json.dumps(client.report_failure(args.session_id), indent=2))

        elif args.command == "session-end":
            print(json.dumps(client.end_session(args.session_id), indent=2))

        elif args.command == "health":
            print(json.dumps(client.get_health(), indent=2))

        else:
            parser.print_help()

    except requests.RequestException as e:
        print(f"Error: {e}")
    except Exception as e:
        print(f"Unexpected error: {e}")


if __name__ == "__main__":
    main()
