"""
Domain services

Routers stay thin and call into these modules:
- scores, headcount     cached statistics over relational rows
- registration, members academy membership lifecycle
- billing               joint bills
- notices, notice_files notice CRUD and the attachment pipeline
- quiz, gpt_client      LLM quiz generation and grading
- otp, mailbox, sms     phone verification and outbound messages
"""
