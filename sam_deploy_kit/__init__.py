"""
sam_deploy_kit
--------------

AWS SAM 스택 배포용 CLI 패키지.
stack-config.json 에 정의된 Parameter Store 파라미터와 시크릿을 원격 저장소와 맞춘 뒤
sam build / package / deploy 를 한 번에 실행하는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "orchestrator",
    "reconciler",
]
