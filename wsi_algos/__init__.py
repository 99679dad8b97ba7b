"""WSI 뷰어 + 외부 알고리즘 서버 연동"""
