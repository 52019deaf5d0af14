#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

API_ROOT = "/api/v2"
DEFAULT_TEMPLATES = {
    "deploy-patroni": 7,
    "deploy-patroni-broken": 8,
}
# Each status read advances a job one step.
JOB_PROGRESSION = ("pending", "running", "successful")
FAILING_PROGRESSION = ("pending", "running", "failed")


class MockAwxState:
    def __init__(self, templates: dict[str, int] | None = None) -> None:
        self.templates = dict(templates or DEFAULT_TEMPLATES)
        self.jobs: dict[int, dict[str, object]] = {}
        self._next_job_id = 1000
        self._lock = threading.Lock()

    def launch(self, template_id: int, extra_vars: dict[str, object]) -> dict[str, object] | None:
        names = {value: key for key, value in self.templates.items()}
        name = names.get(template_id)
        if name is None:
            return None
        with self._lock:
            self._next_job_id += 1
            job = {
                "id": self._next_job_id,
                "name": name,
                "job_template": template_id,
                "extra_vars": extra_vars,
                "step": 0,
                "progression": FAILING_PROGRESSION if name.endswith("-broken") else JOB_PROGRESSION,
            }
            self.jobs[job["id"]] = job
        return job

    def read_job(self, job_id: int) -> dict[str, object] | None:
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None:
                return None
            progression = job["progression"]
            status = progression[min(job["step"], len(progression) - 1)]
            job["step"] = job["step"] + 1
            return {"id": job_id, "name": job["name"], "status": status}

    def running_jobs(self, template_id: int) -> list[dict[str, object]]:
        with self._lock:
            results = []
            for job in self.jobs.values():
                progression = job["progression"]
                status = progression[min(job["step"], len(progression) - 1)]
                if job["job_template"] == template_id and status in {"pending", "waiting", "running"}:
                    results.append({"id": job["id"], "name": job["name"], "status": status})
            return results


def build_handler(state: MockAwxState) -> type[BaseHTTPRequestHandler]:
    class MockAwxHandler(BaseHTTPRequestHandler):
        server_version = "MockAWX/1.0"

        def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
            parts = urlsplit(self.path)
            path = parts.path
            query = parse_qs(parts.query)

            if path == f"{API_ROOT}/ping/":
                self._write_json(HTTPStatus.OK, {"ha": False, "version": "mock"})
                return

            if path == f"{API_ROOT}/job_templates/":
                name = (query.get("name") or [""])[0]
                results = [
                    {"id": template_id, "name": template_name}
                    for template_name, template_id in state.templates.items()
                    if not name or template_name == name
                ]
                self._write_json(HTTPStatus.OK, {"count": len(results), "next": None, "results": results})
                return

            if path == f"{API_ROOT}/jobs/":
                template_id = _int_or_none((query.get("job_template") or [""])[0])
                results = state.running_jobs(template_id) if template_id is not None else []
                self._write_json(HTTPStatus.OK, {"count": len(results), "next": None, "results": results})
                return

            job_id = _path_id(path, f"{API_ROOT}/jobs/")
            if job_id is not None:
                job = state.read_job(job_id)
                if job is None:
                    self._write_json(HTTPStatus.NOT_FOUND, {"detail": "Not found."})
                    return
                self._write_json(HTTPStatus.OK, job)
                return

            self._write_json(HTTPStatus.NOT_FOUND, {"detail": "not found"})

        def do_POST(self) -> None:  # noqa: N802 - stdlib handler signature
            path = urlsplit(self.path).path
            prefix = f"{API_ROOT}/job_templates/"
            if not (path.startswith(prefix) and path.endswith("/launch/")):
                self._write_json(HTTPStatus.NOT_FOUND, {"detail": "not found"})
                return

            template_id = _int_or_none(path[len(prefix) : -len("/launch/")])
            length = int(self.headers.get("Content-Length") or 0)
            body = json.loads(self.rfile.read(length) or b"{}")
            job = state.launch(template_id, body.get("extra_vars") or {}) if template_id is not None else None
            if job is None:
                self._write_json(HTTPStatus.NOT_FOUND, {"detail": "Not found."})
                return
            self._write_json(HTTPStatus.CREATED, {"job": job["id"], "id": job["id"], "type": "job"})

        def log_message(self, _: str, *args: object) -> None:
            if args:
                print("mock-awx:", *args)

        def _write_json(self, status: HTTPStatus, payload: dict[str, object]) -> None:
            raw = json.dumps(payload).encode("utf-8")
            self.send_response(status.value)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(raw)))
            self.end_headers()
            self.wfile.write(raw)

    return MockAwxHandler


def _int_or_none(raw: str) -> int | None:
    try:
        return int(raw)
    except ValueError:
        return None


def _path_id(path: str, prefix: str) -> int | None:
    if not path.startswith(prefix):
        return None
    return _int_or_none(path[len(prefix) :].strip("/"))


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock AWX job template and job endpoints.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8052)
    args = parser.parse_args()

    server = ThreadingHTTPServer((args.host, args.port), build_handler(MockAwxState()))
    print(f"mock-awx listening on http://{args.host}:{args.port}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
