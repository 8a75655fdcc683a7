# riphouse/config/feature_flags.py
# RipHouse Feature Flags

FEATURE_FLAGS = {
    # lifespan 에서 경매 상태 자동 전이 워커 실행
    "AUTO_LIFECYCLE_WORKER": True,
    # 프록시(자동) 입찰 허용
    "ENABLE_AUTO_BID": True,
    # 결제 게이트웨이 없이 RipLimit 직접 충전 (개발/시뮬 편의)
    "ALLOW_DIRECT_PURCHASE": True,
}
