import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.path.join(BASE_DIR, "launch.log")

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 학습자 API (Submission Gateway) 설정
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "http://127.0.0.1:8080/api")
GATEWAY_TOKEN = os.getenv("GATEWAY_TOKEN", "")
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "15.0"))

# 시험 기본값 (서버 응답에 값이 없을 때 사용)
DEFAULT_MAX_VIOLATIONS = int(os.getenv("MAX_VIOLATIONS", "3"))
DEFAULT_DURATION_MINUTES = 60
PASS_PERCENTAGE = 50.0

# 타이머 / 감독 설정
TICK_INTERVAL_SECONDS = 1.0
VIOLATION_DEBOUNCE_SECONDS = float(os.getenv("VIOLATION_DEBOUNCE_SECONDS", "0"))  # 0이면 비활성

# 자동 저장 / 최종 제출 설정
AUTOSAVE_DEBOUNCE_SECONDS = 1.0
FINALIZE_MAX_RETRIES = 3
FINALIZE_BACKOFF_BASE = 1.0   # 1초, 2초, ... 지수 백오프
