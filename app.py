"""Flask application main"""

from flask import Flask, request, jsonify
from flask_socketio import SocketIO, emit
from flask_cors import CORS
from dataclasses import asdict
import base64
import binascii
import json
import logging

from config import Config, configure_logging
from models.text_recognizer import EasyOCRRecognizer
from processors.text_region_extractor import TextRegionExtractor
from processors.scan_pipeline import ScanPipeline
from processors.picture_processor import PictureProcessor, decode_image
from utils.annotator import FrameAnnotator
from utils.data_classes import Frame, RegionOfInterest, ScanOutcome, ScanState
from utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

OUTCOME_EVENTS = {
    ScanState.COMPLETED: 'card_scanned',
    ScanState.CANCELLED: 'scan_cancelled',
    ScanState.TIMED_OUT: 'scan_timeout',
}


class CardScanApp:
    """Flask 애플리케이션"""

    def __init__(self, config: Config):
        self.config = config

        self.app = Flask(__name__)
        self.app.config['SECRET_KEY'] = config.server.secret_key

        CORS(self.app, resources={r"/*": {"origins": "*"}})

        # SocketIO 초기화
        self.socketio = SocketIO(
            self.app,
            cors_allowed_origins="*",
            max_http_buffer_size=config.server.max_buffer_size,
            async_mode='threading'
        )

        # 모델 초기화
        self.recognizer = EasyOCRRecognizer(config.ocr)
        self.extractor = TextRegionExtractor(
            self.recognizer,
            config.extraction,
            config.scan.min_observation_confidence
        )
        self.annotator = FrameAnnotator(config.preview, config.fonts)

        self.pipelines = {}
        self.session_options = {}
        self._register_handlers()
        self._http_handlers()

    def _create_pipeline(self, sid=None) -> ScanPipeline:
        listener = (lambda outcome: self._emit_outcome(sid, outcome)) if sid else None
        return ScanPipeline(self.extractor, self.config.scan, listener=listener)

    def _emit_outcome(self, sid: str, outcome: ScanOutcome):
        """세션 종료 이벤트 전송"""
        event = OUTCOME_EVENTS[outcome.state]
        payload = outcome.record.to_payload() if outcome.record else {'elapsed': round(outcome.elapsed, 3)}
        self.socketio.emit(event, payload, room=sid)

    def _register_handlers(self):
        """SocketIO 이벤트 핸들러 등록"""

        @self.socketio.on('connect')
        def handle_connect():
            logger.debug("Client connected: %s", request.sid)
            emit('connected', {'message': 'Connected to server'})

        @self.socketio.on('disconnect')
        def handle_disconnect():
            pipeline = self.pipelines.pop(request.sid, None)
            self.session_options.pop(request.sid, None)
            if pipeline is not None:
                pipeline.close()

        @self.socketio.on('start_scan')
        def handle_start_scan(data=None):
            if data is not None and not isinstance(data, dict):
                emit('error', {'message': 'start_scan expects an object'})
                return
            self._handle_start_scan(data or {})

        @self.socketio.on('frame')
        def handle_frame(data=None):
            if not isinstance(data, dict):
                emit('error', {'message': 'frame expects an object'})
                return
            self._handle_frame(data)

        @self.socketio.on('cancel_scan')
        def handle_cancel_scan(data=None):
            pipeline = self.pipelines.get(request.sid)
            if pipeline is not None:
                pipeline.stop_session()

        @self.socketio.on('reset_scan')
        def handle_reset_scan(data=None):
            pipeline = self.pipelines.get(request.sid)
            if pipeline is None:
                emit('error', {'message': 'No scan to reset'})
                return
            pipeline.stop_session()
            pipeline.start_session(pipeline.region, self.session_options.get(request.sid))
            emit('scan_started', {'region': asdict(pipeline.region)})

    def _http_handlers(self):
        """HTTP 이벤트 핸들러 등록"""

        @self.app.route('/scan_images', methods=['POST'])
        def handle_scan_images():
            files = request.files.getlist('images')
            if not files:
                return jsonify({'error': 'No images uploaded'}), 400

            try:
                region = RegionOfInterest.from_dict(json.loads(request.form.get('region') or 'null'))
                options = json.loads(request.form.get('options') or 'null')
            except (ValueError, TypeError) as e:
                return jsonify({'error': f'Invalid form data: {e}'}), 400

            pipeline = self._create_pipeline()
            try:
                outcome = PictureProcessor(pipeline).scan(
                    (file.read() for file in files), region, options
                )
            except ConfigError as e:
                return jsonify({'error': str(e)}), 400
            finally:
                pipeline.close()

            result = outcome.to_dict()
            result['success'] = outcome.state is ScanState.COMPLETED
            return jsonify(result)

    def _handle_start_scan(self, data: dict):
        """스캔 세션 시작"""
        sid = request.sid
        try:
            region = RegionOfInterest.from_dict(data.get('region'))
            options = data.get('options')
            pipeline = self.pipelines.get(sid)
            if pipeline is None:
                pipeline = self._create_pipeline(sid)
                self.pipelines[sid] = pipeline
            pipeline.start_session(region, options)
            self.session_options[sid] = options
        except (ConfigError, ValueError, TypeError) as e:
            emit('error', {'message': f'Could not start scan: {e}'})
            return
        emit('scan_started', {'region': asdict(region)})

    def _handle_frame(self, data: dict):
        """프레임 수신"""
        pipeline = self.pipelines.get(request.sid)
        if pipeline is None or not pipeline.is_scanning:
            return
        try:
            image_data = base64.b64decode(data['image'].split(',')[-1])
        except (KeyError, AttributeError, binascii.Error) as e:
            emit('error', {'message': f'Invalid frame: {e}'})
            return

        image = decode_image(image_data)
        if image is None:
            emit('error', {'message': 'Could not decode frame'})
            return

        pipeline.on_frame_captured(Frame.from_image(image, pipeline.region))

        if data.get('preview'):
            annotated = self.annotator.annotate(image, pipeline.region, pipeline.last_observations)
            preview = base64.b64encode(self.annotator.encode_jpeg(annotated)).decode('utf-8')
            emit('preview', {'frame': preview, 'stats': asdict(pipeline.stats)})

    def run(self):
        """애플리케이션 실행"""
        self.socketio.run(
            self.app,
            host=self.config.server.host,
            port=self.config.server.port,
            debug=self.config.server.debug,
            allow_unsafe_werkzeug=True
        )


if __name__ == '__main__':
    config = Config('config.yaml')
    configure_logging(config.logging)
    CardScanApp(config).run()
