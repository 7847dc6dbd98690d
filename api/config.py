# 세션 쿠키 설정
SESSION_COOKIE = "proctor_session"
SESSION_TTL = 3600              # 1시간
SESSION_CLEANUP_INTERVAL = 300  # 5분마다 만료 세션 정리

# CORS (모바일 앱 / 웹뷰 등 다양한 출처 허용)
CORS_ALLOW_ORIGINS = ["*"]
