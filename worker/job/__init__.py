"""잡 핸들러 패키지 (각 모듈의 setup(worker)로 등록)"""
