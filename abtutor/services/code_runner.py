# abtutor/services/code_runner.py
# Java 실행 샌드박스 HTTP 클라이언트.
# 샌드박스 응답: {"success", "stdout", "stderr", "stage": "compile"|"run", "execution_time_ms"}
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from abtutor.config import settings
from abtutor.errors import SandboxUnavailable

logger = logging.getLogger(__name__)


def normalize_output(text: Optional[str]) -> str:
    # 줄 끝 공백/개행 차이는 무시
    lines = (text or "").replace("\r\n", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).strip()


@dataclass
class ExecutionResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    compiler_errors: List[str] = field(default_factory=list)
    runtime_errors: List[str] = field(default_factory=list)
    test_results: List[Dict] = field(default_factory=list)
    execution_time_ms: int = 0

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "compiler_errors": list(self.compiler_errors),
            "runtime_errors": list(self.runtime_errors),
            "test_results": list(self.test_results),
            "execution_time_ms": self.execution_time_ms,
        }


class CodeRunner:

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None, http=None):
        self.url = url or settings.sandbox_url
        self.timeout = timeout or settings.sandbox_timeout_sec
        self.http = http or requests

    def _call(self, code: str, stdin: Optional[str]) -> Dict:
        try:
            r = self.http.post(
                self.url,
                json={"language": "java", "code": code, "stdin": stdin or ""},
                timeout=self.timeout,
            )
            r.raise_for_status()
            return r.json()
        except requests.RequestException as e:
            logger.error("[SANDBOX] call failed url=%s: %s", self.url, e)
            raise SandboxUnavailable(str(e)) from e
        except ValueError as e:
            logger.error("[SANDBOX] invalid json from url=%s", self.url)
            raise SandboxUnavailable("invalid sandbox response") from e

    @staticmethod
    def _split_errors(raw: Dict, result: ExecutionResult) -> None:
        stderr = (raw.get("stderr") or "").strip()
        if raw.get("success") or not stderr:
            return
        lines = [line for line in stderr.splitlines() if line.strip()]
        if raw.get("stage") == "compile":
            result.compiler_errors.extend(lines)
        else:
            result.runtime_errors.extend(lines)

    def run(self, code: str, stdin: Optional[str] = None, test_cases: Optional[List[Dict]] = None) -> ExecutionResult:
        """
        test_cases 가 있으면 케이스마다 실행해 stdout 을 expected_output 과 비교.
        컴파일 에러가 나면 나머지 케이스는 실행하지 않는다.
        """
        if not test_cases:
            raw = self._call(code, stdin)
            result = ExecutionResult(
                success=bool(raw.get("success")),
                stdout=raw.get("stdout") or "",
                stderr=raw.get("stderr") or "",
                execution_time_ms=int(raw.get("execution_time_ms") or 0),
            )
            self._split_errors(raw, result)
            return result

        result = ExecutionResult(success=True)
        for case in test_cases:
            raw = self._call(code, case.get("input"))
            result.execution_time_ms += int(raw.get("execution_time_ms") or 0)
            self._split_errors(raw, result)

            actual = raw.get("stdout") or ""
            passed = bool(raw.get("success")) and (
                normalize_output(actual) == normalize_output(case.get("expected_output"))
            )
            result.test_results.append({
                "input": case.get("input"),
                "expected": case.get("expected_output"),
                "actual": actual,
                "passed": passed,
                "error": raw.get("stderr") or None,
            })
            result.success = result.success and passed
            result.stdout, result.stderr = actual, raw.get("stderr") or ""

            if raw.get("stage") == "compile" and not raw.get("success"):
                break

        logger.info(
            "[SANDBOX] cases=%d passed=%d",
            len(result.test_results), sum(1 for t in result.test_results if t["passed"]),
        )
        return result
