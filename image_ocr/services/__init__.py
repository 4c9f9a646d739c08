"""
Сервисы конвертации изображений в текст.

Модули:
    - confidence: накопитель уверенности распознавания
    - page_source: декодирование многостраничных изображений и PDF
    - tesseract_engine: адаптер OCR движка Tesseract
    - conversion_task: задача конвертации одного документа
    - dispatcher: пул воркеров с очередью задач
    - ocr_service: точка входа в пайплайн + статистика
"""
