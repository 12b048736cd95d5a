"""
GLSL sources for the particle simulation passes

Texel channel contract (one texel = one particle):
    texturePosition: (x, y, z, originX)
    textureVelocity: (vx, vy, vz, originY)
Both passes must carry .w through unchanged.
"""

PASSTHROUGH_VERTEX_SHADER = """
#version 330

in vec2 in_vert;

void main() {
    gl_Position = vec4(in_vert, 0.0, 1.0);
}
"""

SIMPLEX_NOISE_GLSL = """
vec3 mod289(vec3 x) { return x - floor(x * (1.0 / 289.0)) * 289.0; }
vec4 mod289(vec4 x) { return x - floor(x * (1.0 / 289.0)) * 289.0; }
vec4 permute(vec4 x) { return mod289(((x * 34.0) + 1.0) * x); }
vec4 taylorInvSqrt(vec4 r) { return 1.79284291400159 - 0.85373472095314 * r; }

float snoise(vec3 v) {
    const vec2 C = vec2(1.0 / 6.0, 1.0 / 3.0);
    const vec4 D = vec4(0.0, 0.5, 1.0, 2.0);

    vec3 i  = floor(v + dot(v, C.yyy));
    vec3 x0 = v - i + dot(i, C.xxx);

    vec3 g = step(x0.yzx, x0.xyz);
    vec3 l = 1.0 - g;
    vec3 i1 = min(g.xyz, l.zxy);
    vec3 i2 = max(g.xyz, l.zxy);

    vec3 x1 = x0 - i1 + C.xxx;
    vec3 x2 = x0 - i2 + C.yyy;
    vec3 x3 = x0 - D.yyy;

    i = mod289(i);
    vec4 p = permute(permute(permute(
        i.z + vec4(0.0, i1.z, i2.z, 1.0))
        + i.y + vec4(0.0, i1.y, i2.y, 1.0))
        + i.x + vec4(0.0, i1.x, i2.x, 1.0));

    float n_ = 0.142857142857;
    vec3 ns = n_ * D.wyz - D.xzx;

    vec4 j = p - 49.0 * floor(p * ns.z * ns.z);

    vec4 x_ = floor(j * ns.z);
    vec4 y_ = floor(j - 7.0 * x_);

    vec4 x = x_ * ns.x + ns.yyyy;
    vec4 y = y_ * ns.x + ns.yyyy;
    vec4 h = 1.0 - abs(x) - abs(y);

    vec4 b0 = vec4(x.xy, y.xy);
    vec4 b1 = vec4(x.zw, y.zw);

    vec4 s0 = floor(b0) * 2.0 + 1.0;
    vec4 s1 = floor(b1) * 2.0 + 1.0;
    vec4 sh = -step(h, vec4(0.0));

    vec4 a0 = b0.xzyw + s0.xzyw * sh.xxyy;
    vec4 a1 = b1.xzyw + s1.xzyw * sh.zzww;

    vec3 p0 = vec3(a0.xy, h.x);
    vec3 p1 = vec3(a0.zw, h.y);
    vec3 p2 = vec3(a1.xy, h.z);
    vec3 p3 = vec3(a1.zw, h.w);

    vec4 norm = taylorInvSqrt(vec4(dot(p0, p0), dot(p1, p1), dot(p2, p2), dot(p3, p3)));
    p0 *= norm.x;
    p1 *= norm.y;
    p2 *= norm.z;
    p3 *= norm.w;

    vec4 m = max(0.6 - vec4(dot(x0, x0), dot(x1, x1), dot(x2, x2), dot(x3, x3)), 0.0);
    m = m * m;
    return 42.0 * dot(m * m, vec4(dot(p0, x0), dot(p1, x1), dot(p2, x2), dot(p3, x3)));
}

vec3 curlNoise(vec3 p) {
    const float e = 0.1;

    float n1 = snoise(p + vec3(e, 0.0, 0.0));
    float n2 = snoise(p - vec3(e, 0.0, 0.0));
    float n3 = snoise(p + vec3(0.0, e, 0.0));
    float n4 = snoise(p - vec3(0.0, e, 0.0));
    float n5 = snoise(p + vec3(0.0, 0.0, e));
    float n6 = snoise(p - vec3(0.0, 0.0, e));

    return vec3(
        (n3 - n4) - (n5 - n6),
        (n5 - n6) - (n1 - n2),
        (n1 - n2) - (n3 - n4)
    ) / (2.0 * e);
}
"""

POSITION_SHADER = """
#version 330

uniform sampler2D texturePosition;
uniform sampler2D textureVelocity;

uniform float uTime;
uniform float uDeltaTime;
uniform float uMorphProgress;
uniform float uFlowStrength;
uniform float uReturnStrength;
uniform vec3 uPointer;
uniform float uPointerStrength;
uniform float uTurbulence;
uniform float uMaxSpeed;

out vec4 fragColor;
""" + SIMPLEX_NOISE_GLSL + """
void main() {
    ivec2 texel = ivec2(gl_FragCoord.xy);
    vec4 posData = texelFetch(texturePosition, texel, 0);
    vec4 velData = texelFetch(textureVelocity, texel, 0);

    vec3 pos = posData.xyz;
    vec3 vel = velData.xyz;
    vec3 origin = vec3(posData.w, velData.w, 0.0);

    // Flow field
    vec3 flowPos = pos * 2.0 + vec3(uTime * 0.1, 0.0, 0.0);
    vec3 flow = curlNoise(flowPos) * uFlowStrength;

    // Spring back to the sampled rest position
    vec3 returnForce = (origin - pos) * uReturnStrength;

    // Pointer: repel inside 0.5, gentle attraction outside
    vec3 toPointer = uPointer - pos;
    float pointerDist = length(toPointer);
    float pointerInfluence = 1.0 / (1.0 + pointerDist * pointerDist * 4.0);
    vec3 pointerForce = vec3(0.0);
    if (pointerDist > 1e-6) {
        vec3 dir = toPointer / pointerDist;
        if (pointerDist < 0.5) {
            pointerForce = -dir * pointerInfluence * uPointerStrength;
        } else {
            pointerForce = dir * pointerInfluence * uPointerStrength * 0.3;
        }
    }

    // Turbulence
    vec3 turbPos = pos * 3.0 + vec3(uTime * 0.2, uTime * 0.15, uTime * 0.1);
    vec3 turbulence = vec3(
        snoise(turbPos),
        snoise(turbPos + vec3(100.0)),
        snoise(turbPos + vec3(200.0))
    ) * uTurbulence;

    vec3 totalForce = flow + returnForce + pointerForce + turbulence;

    vel = vel * 0.95 + totalForce * uDeltaTime;

    float speed = length(vel);
    if (speed > uMaxSpeed) {
        vel = vel / speed * uMaxSpeed;
    }

    pos += vel * uDeltaTime;

    fragColor = vec4(pos, posData.w);
}
"""

VELOCITY_SHADER = """
#version 330

uniform sampler2D textureVelocity;
uniform float uDeltaTime;
uniform float uDamping;

out vec4 fragColor;

void main() {
    vec4 velData = texelFetch(textureVelocity, ivec2(gl_FragCoord.xy), 0);
    fragColor = vec4(velData.xyz * uDamping, velData.w);
}
"""
