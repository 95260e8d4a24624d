from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from answer_engine.errors import AnswerEngineError
from answer_engine.routers import ask, documents, votes
from answer_engine.runtime import bootstrap

bootstrap()

STATUS_BY_KIND = {
    'invalid_input': 400,
    'usage_limit': 402,
    'forbidden': 403,
    'not_found': 404,
    'embedding_failure': 502,
    'dimension_mismatch': 500,
    'generation_failure': 502,
}

app = FastAPI(title='answer-engine-api', version='0.1.0')


@app.exception_handler(AnswerEngineError)
async def answer_engine_error_handler(request: Request, exc: AnswerEngineError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    body = exc.to_dict()
    body['retryable'] = exc.retryable
    return JSONResponse(status_code=status, content=body)


@app.get('/health')
async def health() -> dict:
    return {'ok': True}


app.include_router(ask.router)
app.include_router(votes.router)
app.include_router(documents.router)
