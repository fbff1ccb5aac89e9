"""
Domain 패키지

도메인 엔티티, 값 객체, 오류 분류, 포트를 정의합니다.
외부 의존성 없이 순수한 비즈니스 로직만 포함합니다.

주요 엔티티:
- Account: 연결된 메일함 계정과 암호화된 OAuth 자격 증명
- Email: 계정별로 저장된 메일 (계정 + 제공자 메시지 ID로 유일)
- SyncResult: 동기화 패스 한 번의 결과 (저장하지 않음)
- OAuthToken: 메모리 상의 평문 토큰
"""
